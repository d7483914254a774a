"""
ui — HTTP and WebSocket surface over the controller.
"""
