# -*- coding: utf-8 -*-
"""
live_core.py
────────────
Moteur de lecture "live" pour Image2Tone.

- Une session = une source (image ou vidéo) + un drapeau pause + un worker.
- Une seule session active : en démarrer une nouvelle arrête ET attend
  (join) la précédente avant toute nouvelle écriture audio.
- Image : un cycle par seconde, grille réduite une seule fois puis réutilisée ;
  la trame est affichée dès l'ouverture, même en pause.
- Vidéo : un cycle par trame décodée ; pas de trame / pause → attente 100 ms.
- Chaque cycle est isolé : une erreur est journalisée, le cycle est sauté,
  le worker continue.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from .audio import CYCLE_S, ColumnFrequency, format_frequency_log, sequence_columns
from .errors import EndOfStream, SinkUnavailableError, SourceUnreadableError, StageComputationError
from .image_proc import reduce_frame
from .sinks import DEFAULT_PCM, AudioSink, ClickCue, DisplaySink, PcmFormat, SoundDeviceSink
from .video import FrameSource


logger = logging.getLogger(__name__)

IDLE_WAIT_S: float = 0.1   # attente quand la vidéo est en pause / sans trame


# ─────────────────────────────────────────────
#  Paramètres et résultats
# ─────────────────────────────────────────────

@dataclass
class SessionConfig:
    cycle_s: float = CYCLE_S
    idle_wait_s: float = IDLE_WAIT_S
    pcm_format: PcmFormat = DEFAULT_PCM
    click: Optional[ClickCue] = field(default_factory=ClickCue)   # None = pas de clic
    max_cycles: Optional[int] = None     # arrêt après N cycles joués (None = infini)


class SessionState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CycleStatus(enum.Enum):
    PLAYED = "played"
    SKIPPED = "skipped"              # erreur contenue, on réessaie au prochain cycle
    PAUSED = "paused"
    NO_FRAME = "no_frame"
    END_OF_STREAM = "end_of_stream"
    SOURCE_FAILED = "source_failed"  # décodage vidéo impossible → fin de session


@dataclass
class CycleResult:
    status: CycleStatus
    reason: str = ""
    frequencies: List[ColumnFrequency] = field(default_factory=list)

    @property
    def ends_session(self) -> bool:
        return self.status in (CycleStatus.END_OF_STREAM, CycleStatus.SOURCE_FAILED)


# ─────────────────────────────────────────────
#  Session
# ─────────────────────────────────────────────

_SESSION_IDS = itertools.count(1)


class PlaybackSession:
    """
    Worker de lecture pour une source. Créée en pause.

    Seul le drapeau "playing" est partagé avec le thread appelant
    (threading.Event : lecture/écriture atomiques).
    """

    def __init__(
        self,
        source: FrameSource,
        audio_sink: AudioSink,
        display: DisplaySink,
        config: Optional[SessionConfig] = None,
        on_cycle: Optional[Callable[["PlaybackSession", CycleResult], None]] = None,
    ):
        self.id = next(_SESSION_IDS)
        self.source = source
        self.audio_sink = audio_sink
        self.display = display
        self.config = config or SessionConfig()
        self.on_cycle = on_cycle

        self._playing = threading.Event()
        self._stop = threading.Event()
        self._toggle_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.state = SessionState.IDLE
        self.cycles_played = 0
        self._cached_grid: Optional[np.ndarray] = None

    # ---------------- PAUSE ----------------

    @property
    def paused(self) -> bool:
        return not self._playing.is_set()

    def pause(self) -> None:
        self._playing.clear()

    def resume(self) -> None:
        self._playing.set()

    def toggle_pause(self) -> bool:
        """Inverse le drapeau ; renvoie le nouvel état "paused"."""
        with self._toggle_lock:
            if self._playing.is_set():
                self._playing.clear()
            else:
                self._playing.set()
            return self.paused

    # ---------------- CYCLE DE VIE ----------------

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Session {self.id} déjà démarrée.")
        self.state = SessionState.RUNNING
        self._thread = threading.Thread(
            target=self._run,
            name=f"playback-{self.source.kind}-{self.id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Demande l'arrêt et attend la sortie complète du worker."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self.state = SessionState.STOPPED

    def join(self, timeout: Optional[float] = None) -> bool:
        """Attend la fin naturelle (fin de flux, max_cycles). True si terminé."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # ---------------- CYCLE ----------------

    def run_cycle(self) -> CycleResult:
        """
        Un cycle complet : trame → grille → forme d'onde → sorties.

        Aucune exception ne sort d'ici ; le calcul est terminé avant
        toute livraison aux sorties.
        """
        if self.paused:
            return CycleResult(CycleStatus.PAUSED)

        # Image fixe : une seule réduction pour toute la session
        grid = self._cached_grid
        if grid is None:
            try:
                frame = self.source.read()
            except EndOfStream:
                return CycleResult(CycleStatus.END_OF_STREAM)
            except SourceUnreadableError as e:
                if self.source.kind == "video":
                    logger.error("Session %d : décodage vidéo impossible : %s", self.id, e)
                    return CycleResult(CycleStatus.SOURCE_FAILED, str(e))
                logger.warning("Session %d : image illisible, cycle sauté : %s", self.id, e)
                return CycleResult(CycleStatus.SKIPPED, str(e))
            except Exception as e:
                logger.warning("Session %d : lecture impossible, cycle sauté : %s", self.id, e)
                return CycleResult(CycleStatus.SKIPPED, str(e))

            if frame is None:
                return CycleResult(CycleStatus.NO_FRAME)

            try:
                grid = reduce_frame(frame)
            except (SourceUnreadableError, StageComputationError) as e:
                logger.warning("Session %d : trame rejetée, cycle sauté : %s", self.id, e)
                return CycleResult(CycleStatus.SKIPPED, str(e))
            except Exception as e:
                logger.warning("Session %d : réduction impossible, cycle sauté : %s", self.id, e)
                return CycleResult(CycleStatus.SKIPPED, str(e))

            if self.source.kind == "image":
                self._cached_grid = grid

        try:
            waveform, freqs = sequence_columns(grid, self.config.pcm_format.sample_rate)
            text = format_frequency_log(freqs)
        except Exception as e:
            logger.warning("Session %d : synthèse impossible, cycle sauté : %s", self.id, e)
            return CycleResult(CycleStatus.SKIPPED, str(e))

        try:
            self.display.show_frame(grid)
            self.display.show_frequencies(text)
            self.audio_sink.play(waveform, self.config.pcm_format)
        except SinkUnavailableError as e:
            logger.warning("Session %d : sortie indisponible, cycle sauté : %s", self.id, e)
            return CycleResult(CycleStatus.SKIPPED, str(e), freqs)
        except Exception as e:
            logger.warning("Session %d : erreur de sortie, cycle sauté : %s", self.id, e)
            return CycleResult(CycleStatus.SKIPPED, str(e), freqs)

        logger.debug("Session %d : cycle joué\n%s", self.id, text)

        if self.config.click is not None:
            self.config.click.fire(self.audio_sink, self.config.pcm_format)

        return CycleResult(CycleStatus.PLAYED, frequencies=freqs)

    # ---------------- WORKER ----------------

    def _run(self) -> None:
        logger.info("Session %d démarrée : %r", self.id, self.source)
        try:
            self.source.open()
        except Exception as e:
            logger.error("Session %d : ouverture impossible : %s", self.id, e)
            self._release()
            return

        try:
            if self.source.kind == "image":
                self._run_image()
            else:
                self._run_video()
        finally:
            self._release()

    def _after_cycle(self, result: CycleResult) -> bool:
        """Notifie l'observateur ; True si la session doit s'arrêter."""
        if result.status is CycleStatus.PLAYED:
            self.cycles_played += 1
        if self.on_cycle is not None:
            try:
                self.on_cycle(self, result)
            except Exception:
                logger.exception("Session %d : observateur de cycle en échec", self.id)
        if result.ends_session:
            return True
        max_cycles = self.config.max_cycles
        return max_cycles is not None and self.cycles_played >= max_cycles

    def _preview_image(self) -> None:
        """Réduit l'image dès l'ouverture et l'affiche, même en pause."""
        try:
            frame = self.source.read()
            if frame is None:
                return
            grid = reduce_frame(frame)
        except Exception as e:
            # run_cycle réessaiera à chaque tick
            logger.warning("Session %d : aperçu impossible : %s", self.id, e)
            return
        self._cached_grid = grid
        try:
            self.display.show_frame(grid)
        except Exception as e:
            logger.warning("Session %d : affichage de l'aperçu en échec : %s", self.id, e)

    def _run_image(self) -> None:
        self._preview_image()
        cycle_s = self.config.cycle_s
        next_tick = time.monotonic()
        while not self._stop.is_set():
            delay = next_tick - time.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break
            # Cadence fixe ; si un cycle déborde, on repart de maintenant
            next_tick = max(next_tick + cycle_s, time.monotonic())
            if self.paused:
                continue
            if self._after_cycle(self.run_cycle()):
                break

    def _run_video(self) -> None:
        idle = self.config.idle_wait_s
        while not self._stop.is_set():
            if self.paused:
                self._stop.wait(idle)
                continue
            result = self.run_cycle()
            if self._after_cycle(result):
                if result.status is CycleStatus.END_OF_STREAM:
                    logger.info("Session %d : fin de la vidéo", self.id)
                break
            if result.status in (CycleStatus.NO_FRAME, CycleStatus.PAUSED):
                self._stop.wait(idle)

    def _release(self) -> None:
        if self.config.click is not None:
            self.config.click.wait()
        for name, closer in (("source", self.source.close), ("sortie audio", self.audio_sink.close)):
            try:
                closer()
            except Exception as e:
                logger.warning("Session %d : fermeture %s en échec : %s", self.id, name, e)
        self.state = SessionState.STOPPED
        logger.info("Session %d terminée (%d cycles joués)", self.id, self.cycles_played)


# ─────────────────────────────────────────────
#  Contrôleur : une seule session active
# ─────────────────────────────────────────────

class PlaybackController:
    """
    Point d'entrée des interfaces : démarrer / arrêter / pause.

    start() arrête et attend la session précédente avant de lancer la
    suivante : deux sessions n'écrivent jamais en même temps sur la sortie.
    """

    def __init__(
        self,
        display: DisplaySink,
        audio_sink_factory: Callable[[], AudioSink] = SoundDeviceSink,
        config: Optional[SessionConfig] = None,
        on_cycle: Optional[Callable[[PlaybackSession, CycleResult], None]] = None,
    ):
        self.display = display
        self.audio_sink_factory = audio_sink_factory
        self.config = config or SessionConfig()
        self.on_cycle = on_cycle
        self._lock = threading.RLock()
        self.current: Optional[PlaybackSession] = None

    def start(self, source: FrameSource, playing: bool = False) -> PlaybackSession:
        with self._lock:
            self._stop_current()
            session = PlaybackSession(
                source=source,
                audio_sink=self.audio_sink_factory(),
                display=self.display,
                config=self.config,
                on_cycle=self.on_cycle,
            )
            if playing:
                session.resume()
            session.start()
            self.current = session
            return session

    def stop(self) -> None:
        with self._lock:
            self._stop_current()

    def toggle_pause(self) -> Optional[bool]:
        with self._lock:
            if self.current is None:
                return None
            return self.current.toggle_pause()

    def _stop_current(self) -> None:
        if self.current is not None:
            logger.info("Arrêt de la session %d", self.current.id)
            self.current.stop()
            self.current = None
