# -*- coding: utf-8 -*-
"""
image_proc.py
─────────────
Utilitaires liés au traitement d'image :
- trame brute (RawFrame) et chargement d'image via Pillow
- luminance BT.709 pleine résolution
- rééchantillonnage vers la grille fixe 64×64 (étirement, ratio non conservé)
- quantification en 16 niveaux de luminance
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, ImageOps

from .errors import SourceUnreadableError, StageComputationError


# ─────────────────────────────────────────────
#  Constantes
# ─────────────────────────────────────────────

GRID_SIZE: int = 64     # côté de la grille de luminance
LEVEL_STEP: int = 16    # pas de quantification (16 niveaux)

# Coefficients de luma ITU-R BT.709 (R, G, B)
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)

CHANNEL_ORDERS = ("RGB", "BGR")


# ─────────────────────────────────────────────
#  Trame brute
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class RawFrame:
    """Trame couleur entrelacée 3 canaux, telle que livrée par un décodeur."""

    pixels: np.ndarray          # (height, width, 3) uint8
    channel_order: str = "RGB"  # "RGB" (Pillow, moviepy) ou "BGR" (OpenCV)

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 1 else 0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    def is_empty(self) -> bool:
        return self.pixels.size == 0 or self.width == 0 or self.height == 0


def load_image_frame(path: Union[str, Path]) -> RawFrame:
    """
    Charge une image fixe en RawFrame RGB.

    Raises:
        SourceUnreadableError: fichier absent ou illisible par Pillow.
    """
    p = Path(path)
    if not p.exists():
        raise SourceUnreadableError(f"Image introuvable : {p}")
    try:
        with Image.open(p) as im:
            im = ImageOps.exif_transpose(im)
            pixels = np.asarray(im.convert("RGB"), dtype=np.uint8)
    except OSError as e:
        raise SourceUnreadableError(f"Impossible de lire l'image : {p.name}") from e
    return RawFrame(pixels=pixels, channel_order="RGB")


# ─────────────────────────────────────────────
#  Étapes de réduction
# ─────────────────────────────────────────────

def _to_rgb(frame: RawFrame) -> np.ndarray:
    if frame.is_empty():
        raise SourceUnreadableError("Trame vide.")
    px = frame.pixels
    if px.ndim != 3 or px.shape[2] != 3:
        raise SourceUnreadableError(
            f"Trame attendue (h, w, 3), reçu {tuple(px.shape)}."
        )
    if frame.channel_order == "BGR":
        # Les poids de luma s'appliquent à (R, G, B)
        return px[..., ::-1]
    if frame.channel_order != "RGB":
        raise SourceUnreadableError(f"Ordre de canaux inconnu : {frame.channel_order}")
    return px


def luminance_plane(frame: RawFrame) -> np.ndarray:
    """
    Luminance pleine résolution, stockée comme un plan 8 bits :
        L = 0.2126 R + 0.7152 G + 0.0722 B   (arrondi, saturé dans [0,255])
    """
    rgb = _to_rgb(frame).astype(np.float64)
    lum = rgb @ LUMA_WEIGHTS
    if not np.all(np.isfinite(lum)):
        raise StageComputationError("Luminance non finie.")
    return np.clip(np.rint(lum), 0.0, 255.0).astype(np.uint8)


def resample_grid(plane: np.ndarray, size: int = GRID_SIZE) -> np.ndarray:
    """
    Ramène un plan de luminance à (size, size) par moyenne de zones (BOX).
    Le ratio d'origine n'est PAS conservé : on étire pour remplir la grille.
    """
    if plane.ndim != 2 or plane.size == 0:
        raise SourceUnreadableError("Plan de luminance vide.")
    img = Image.fromarray(plane.astype(np.float32))   # mode "F"
    small = img.resize((size, size), Image.Resampling.BOX)
    out = np.asarray(small, dtype=np.float64)
    if not np.all(np.isfinite(out)):
        raise StageComputationError("Rééchantillonnage non fini.")
    return np.clip(np.rint(out), 0.0, 255.0).astype(np.uint8)


def quantize_luminance(grid: np.ndarray, step: int = LEVEL_STEP) -> np.ndarray:
    """(v // step) * step : idempotent, valeurs dans {0, 16, ..., 240}."""
    g = np.asarray(grid).astype(np.int64)
    return ((g // step) * step).astype(np.uint8)


def reduce_frame(frame: RawFrame) -> np.ndarray:
    """
    RawFrame → grille 64×64 de luminance quantifiée (uint8, lecture seule).

    Raises:
        SourceUnreadableError: trame vide / mal formée.
        StageComputationError: échec numérique pendant la conversion.
    """
    plane = luminance_plane(frame)
    grid = quantize_luminance(resample_grid(plane, GRID_SIZE))
    grid.flags.writeable = False
    return grid


def grid_to_image(grid: np.ndarray) -> Image.Image:
    """Grille de luminance → image Pillow en niveaux de gris (mode "L")."""
    return Image.fromarray(np.ascontiguousarray(grid, dtype=np.uint8))
