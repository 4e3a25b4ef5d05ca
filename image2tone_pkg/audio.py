# -*- coding: utf-8 -*-
"""
audio.py
────────
Mapping colonnes → fréquences + synthèse sinus + séquencement d'une seconde.

- Une fréquence par colonne de la grille 64×64 : 20 + moyenne × 30 Hz.
- Une tonalité sinus int8 par colonne, durée 1/64 s.
- Mixage additif dans un buffer int8 d'une seconde : le débordement
  int8 reboucle (modulo 256), il n'est pas écrêté.
- Clic de repère : court clip int8 pré-calculé, partagé en lecture seule.
"""

from __future__ import annotations

import logging
import math
import wave
from pathlib import Path
from typing import List, Tuple, Union

import numpy as np

from .errors import SourceUnreadableError, StageComputationError


logger = logging.getLogger(__name__)

SAMPLE_RATE: int = 44100
CYCLE_S: float = 1.0            # durée d'une séquence complète
BASE_FREQ_HZ: float = 20.0      # luminance moyenne 0 → 20 Hz
HZ_PER_LEVEL: float = 30.0      # chaque niveau de luminance ajoute 30 Hz
AMPLITUDE: int = 127            # crête int8 symétrique

ColumnFrequency = Tuple[int, float]


# ───────────────────────────────
#  Mapping colonne -> Hz
# ───────────────────────────────

def column_frequency(grid: np.ndarray, column: int) -> float:
    """
    Moyenne arithmétique des 64 luminances de la colonne, puis :
        f = 20 + moyenne * 30
    """
    if not 0 <= column < grid.shape[1]:
        raise IndexError(f"Colonne hors grille : {column}")
    avg = float(np.mean(grid[:, column].astype(np.float64)))
    return BASE_FREQ_HZ + avg * HZ_PER_LEVEL


def column_frequencies(grid: np.ndarray) -> List[ColumnFrequency]:
    return [(c, column_frequency(grid, c)) for c in range(grid.shape[1])]


# ───────────────────────────────
#  Synthèse
# ───────────────────────────────

def synthesize_tone(frequency: float, duration: float, sample_rate: float = SAMPLE_RATE) -> np.ndarray:
    """
    Sinus pur en int8 :
        n = round(sample_rate * duration)
        x[i] = round(sin(2π f i / sample_rate) * 127)
    """
    n = int(round(sample_rate * duration))
    if n <= 0:
        return np.zeros(0, dtype=np.int8)
    i = np.arange(n, dtype=np.float64)
    y = np.rint(np.sin(2.0 * math.pi * frequency * i / sample_rate) * AMPLITUDE)
    if not np.all(np.isfinite(y)):
        raise StageComputationError(f"Synthèse non finie pour f={frequency} Hz.")
    return y.astype(np.int8)


def sequence_columns(
    grid: np.ndarray,
    sample_rate: int = SAMPLE_RATE,
) -> Tuple[np.ndarray, List[ColumnFrequency]]:
    """
    Assemble les 64 colonnes en une forme d'onde d'une seconde.

    Colonne c → tonalité de 1/64 s ajoutée à l'offset c * floor(sr / 64).
    Les écritures au-delà du buffer sont ignorées.

    Returns:
        (waveform int8 de round(sr * 1.0) échantillons, [(colonne, Hz), ...])
    """
    columns = grid.shape[1]
    total = int(round(sample_rate * CYCLE_S))
    column_s = CYCLE_S / columns
    per_column = int(sample_rate // columns)

    mixed = np.zeros(total, dtype=np.int8)
    freqs: List[ColumnFrequency] = []

    for c in range(columns):
        f = column_frequency(grid, c)
        freqs.append((c, f))

        tone = synthesize_tone(f, column_s, sample_rate)
        mix_tone(mixed, tone, c * per_column)

    return mixed, freqs


def mix_tone(mixed: np.ndarray, tone: np.ndarray, offset: int) -> None:
    """
    Ajoute `tone` dans `mixed` (int8, en place) à partir de `offset`.
    Les échantillons au-delà de la fin du buffer sont ignorés.
    """
    end = min(offset + tone.size, mixed.size)
    if end > offset:
        # int8 += int8 : rebouclage modulo 256, comme un octet signé
        mixed[offset:end] += tone[: end - offset]


def format_frequency_log(freqs: List[ColumnFrequency]) -> str:
    """Une ligne par colonne : "Column {c}: {f} Hz"."""
    return "\n".join(f"Column {c}: {f} Hz" for c, f in freqs)


# ───────────────────────────────
#  Clic de repère
# ───────────────────────────────

CLICK_FREQ_HZ: float = 2000.0
CLICK_MS: float = 25.0
CLICK_DECAY_MS: float = 4.0


def _make_click(sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Burst sinus 2 kHz à décroissance exponentielle (≈ clic de souris)."""
    n = int(round(sample_rate * CLICK_MS / 1000.0))
    t = np.arange(n, dtype=np.float64) / sample_rate
    env = np.exp(-t / (CLICK_DECAY_MS / 1000.0))
    y = np.rint(np.sin(2.0 * math.pi * CLICK_FREQ_HZ * t) * env * AMPLITUDE)
    clip = y.astype(np.int8)
    clip.flags.writeable = False
    return clip


CLICK_CUE: np.ndarray = _make_click()


def load_cue_wav(path: Union[str, Path], sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """
    Charge un WAV PCM (8 ou 16 bits, mono ou stéréo) en clip int8 mono.

    Le clip n'est pas rééchantillonné : un WAV à un autre taux est joué
    au taux de la session (avertissement journalisé).
    """
    p = Path(path)
    try:
        with wave.open(str(p), "rb") as wf:
            n_channels = wf.getnchannels()
            width = wf.getsampwidth()
            rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except (OSError, wave.Error, EOFError) as e:
        raise SourceUnreadableError(f"WAV de clic illisible : {p.name}") from e

    if width == 1:
        # WAV 8 bits : non signé, centré sur 128
        data = np.frombuffer(raw, dtype=np.uint8).astype(np.int16) - 128
    elif width == 2:
        data = np.frombuffer(raw, dtype="<i2").astype(np.int32) >> 8
    else:
        raise SourceUnreadableError(f"Largeur d'échantillon non gérée : {width * 8} bits")

    if n_channels > 1:
        data = data.reshape(-1, n_channels).mean(axis=1)

    if rate != sample_rate:
        logger.warning("Clic %s à %d Hz joué à %d Hz", p.name, rate, sample_rate)

    clip = np.clip(np.rint(data), -128, 127).astype(np.int8)
    clip.flags.writeable = False
    return clip
