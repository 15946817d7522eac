"""
Mockforge - UI mockup generation toolkit

Turns prompt-generated HTML screens into finished mockups by synthesizing
the images their placeholder <img> tags call for.
"""

__version__ = "0.1.0"
__author__ = "Mockforge Team"
