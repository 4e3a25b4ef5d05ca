# -*- coding: utf-8 -*-
"""
Image2Tone : sonification d'images et de vidéos par colonnes de luminance.
"""

__version__ = "1.0.0"
