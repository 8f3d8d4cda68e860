"""
AdStitch - Segmented Media Composition & Continuity Engine

Turns a storyboard of short AI-generated segments into one seamless ad video:
parallel segment generation, continuity-aware stitch points, and a
multi-track ffmpeg composition.
"""

__version__ = "0.1.0"
