#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
────────────────────────────────────────────
 Image2Tone v1.0  (image + vidéo, lecture live)
────────────────────────────────────────────
Point d'entrée CLI.

Réduit chaque image / trame à une grille 64×64 de luminance quantifiée,
puis joue les 64 colonnes en une seconde : une tonalité sinus par colonne,
de 20 Hz (noir) à 7220 Hz (blanc).

Licence : MIT
────────────────────────────────────────────
"""

from image2tone_pkg.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
