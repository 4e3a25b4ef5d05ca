# -*- coding: utf-8 -*-
"""
sinks.py
────────
Sorties du pipeline :
- sortie audio PCM 8 bits signé mono (sounddevice), écriture bloquante + drain
- sortie d'affichage (grille réduite + journal des fréquences)
- clic de repère joué en tâche de fond, sans effet sur le cycle principal
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol, Union

import numpy as np

from .audio import CLICK_CUE, SAMPLE_RATE
from .errors import SinkUnavailableError


logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
#  Format PCM
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class PcmFormat:
    sample_rate: int = SAMPLE_RATE
    sample_bits: int = 8
    channels: int = 1
    signed: bool = True
    big_endian: bool = True


DEFAULT_PCM = PcmFormat()


def to_pcm_bytes(waveform: np.ndarray, fmt: PcmFormat = DEFAULT_PCM) -> bytes:
    """Buffer int8 → flux d'octets PCM signé selon `fmt` (8 bits uniquement)."""
    if fmt.sample_bits != 8 or not fmt.signed:
        raise ValueError("Seul le PCM 8 bits signé est produit.")
    order = ">" if fmt.big_endian else "<"
    return np.ascontiguousarray(waveform, dtype=np.int8).astype(order + "i1").tobytes()


class AudioSink(Protocol):
    def play(self, waveform: np.ndarray, fmt: PcmFormat = DEFAULT_PCM) -> None: ...

    def close(self) -> None: ...


class DisplaySink(Protocol):
    def show_frame(self, grid: np.ndarray) -> None: ...

    def show_frequencies(self, text: str) -> None: ...


# ─────────────────────────────────────────────
#  Sortie audio sounddevice
# ─────────────────────────────────────────────

class SoundDeviceSink:
    """
    Joue un buffer PCM via sounddevice.

    Chaque appel ouvre un flux, écrit tout le buffer, attend la fin de la
    lecture (stop() draine les buffers en attente) puis ferme le flux :
    deux secondes successives ne peuvent donc pas se chevaucher.
    """

    def __init__(self, device: Union[int, str, None] = None):
        self.device = device

    def play(self, waveform: np.ndarray, fmt: PcmFormat = DEFAULT_PCM) -> None:
        # Import tardif : PortAudio absent → OSError dès l'import
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise SinkUnavailableError(f"sounddevice indisponible : {e}") from e

        data = to_pcm_bytes(waveform, fmt)
        try:
            stream = sd.RawOutputStream(
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                dtype="int8",
                device=self.device,
            )
            with stream:
                stream.write(data)
                # stop() attend que tout soit joué (abort() jetterait le reste)
                stream.stop()
        except sd.PortAudioError as e:
            raise SinkUnavailableError(f"Sortie audio indisponible : {e}") from e

    def close(self) -> None:
        pass


class NullAudioSink:
    """Sortie muette (mode --dry-run) : compte les buffers reçus."""

    def __init__(self):
        self.played = 0

    def play(self, waveform: np.ndarray, fmt: PcmFormat = DEFAULT_PCM) -> None:
        self.played += 1

    def close(self) -> None:
        pass


# ─────────────────────────────────────────────
#  Affichage
# ─────────────────────────────────────────────

class LogDisplay:
    """Affichage minimal : passe par le journal (mode sans interface)."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def show_frame(self, grid: np.ndarray) -> None:
        self.log.debug(
            "Trame réduite %dx%d, luminance moyenne %.1f",
            grid.shape[1], grid.shape[0], float(np.mean(grid)),
        )

    def show_frequencies(self, text: str) -> None:
        self.log.debug("Fréquences :\n%s", text)


# ─────────────────────────────────────────────
#  Clic de repère
# ─────────────────────────────────────────────

class ClickCue:
    """
    Joue un court clip en parallèle du cycle principal (fire-and-forget).
    Une erreur de lecture est journalisée et n'atteint jamais l'appelant.
    """

    def __init__(self, clip: np.ndarray = CLICK_CUE, fmt: PcmFormat = DEFAULT_PCM):
        self.clip = clip
        self.fmt = fmt
        self._threads: List[threading.Thread] = []

    def fire(self, sink: AudioSink, fmt: Optional[PcmFormat] = None) -> threading.Thread:
        """Lance le clip ; `fmt` (format de la session) prime sur self.fmt."""
        t = threading.Thread(
            target=self._play, args=(sink, fmt or self.fmt), name="click-cue", daemon=True
        )
        self._threads = [th for th in self._threads if th.is_alive()]
        self._threads.append(t)
        t.start()
        return t

    def _play(self, sink: AudioSink, fmt: PcmFormat) -> None:
        try:
            sink.play(self.clip, fmt)
        except Exception as e:
            logger.warning("Clic non joué : %s", e)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Attend les clics en cours (fin de session)."""
        for t in list(self._threads):
            t.join(timeout)
        self._threads = [th for th in self._threads if th.is_alive()]
