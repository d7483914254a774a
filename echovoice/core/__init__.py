"""
core — Constants, structured logging, configuration, timers, and the
emergency-trigger state machine shared by every other package.
"""
