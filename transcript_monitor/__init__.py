"""
Transcript Monitor Service
Polls a webhook relay for live transcription events and recording activity
"""

__version__ = "0.1.0"
