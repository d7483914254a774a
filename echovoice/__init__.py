"""
EchoVoice — Context-aware AAC phrase assistant.

Detected emotion / nearby person / location / time → ranked speakable phrases,
plus a long-press / rapid-tap emergency path that escalates to contacts.
"""

__version__ = "1.0.0"
__author__ = "EchoVoice Team"
