"""
pipeline — Runtime orchestration.

:class:`EchoController` owns every subsystem and exposes an event bus for
the UI layer.
"""
