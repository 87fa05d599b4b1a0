"""
FFQueue - single-flight FFmpeg transcode queue
"""

__version__ = "1.0.0"
