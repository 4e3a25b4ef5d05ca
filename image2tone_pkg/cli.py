# -*- coding: utf-8 -*-
"""
cli.py
──────
Interface en ligne de commande + orchestration globale.

- sélection du fichier (image / vidéo) avec liste d'extensions autorisées
- configuration du journal
- lecture sans interface : une session, arrêt après --cycles ou Ctrl-C
"""

import argparse
import logging
import signal
from pathlib import Path
from typing import Optional, Sequence, Union

from . import __version__
from .audio import load_cue_wav
from .errors import Image2ToneError, UnsupportedMediaError
from .live_core import CycleResult, CycleStatus, PlaybackController, PlaybackSession, SessionConfig
from .sinks import ClickCue, LogDisplay, NullAudioSink, SoundDeviceSink
from .video import FrameSource, ImageFrameSource, VideoFrameSource


# ─────────────────────────────────────────────
#  Sélection de fichier
# ─────────────────────────────────────────────

MEDIA_EXTENSIONS = {
    "image": (".png", ".jpg", ".jpeg"),
    "video": (".mp4", ".avi", ".m4v"),
}

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def infer_kind(path: Union[str, Path]) -> str:
    """Type de média déduit de l'extension ("image" ou "video")."""
    ext = Path(path).suffix.lower()
    for kind, exts in MEDIA_EXTENSIONS.items():
        if ext in exts:
            return kind
    raise UnsupportedMediaError(f"Extension non prise en charge : '{ext or Path(path).name}'")


def select_source(path: Union[str, Path], kind: Optional[str] = None) -> FrameSource:
    """
    Valide (chemin, type) et construit la source de trames.

    Raises:
        UnsupportedMediaError: type inconnu ou extension hors liste du type.
    """
    p = Path(path)
    if kind is None:
        kind = infer_kind(p)
    if kind not in MEDIA_EXTENSIONS:
        raise UnsupportedMediaError(f"Type de média inconnu : {kind}")
    if p.suffix.lower() not in MEDIA_EXTENSIONS[kind]:
        allowed = ", ".join(MEDIA_EXTENSIONS[kind])
        raise UnsupportedMediaError(f"{p.name} : extension refusée pour '{kind}' (autorisées : {allowed})")
    if kind == "image":
        return ImageFrameSource(p)
    return VideoFrameSource(p)


def configure_logging(level: str = "info", filename: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        filename=filename,
    )


# ─────────────────────────────────────────────
#  Construction du parser d'arguments
# ─────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image2tone.py",
        description=(
            "Sonifie une image ou une vidéo : 64 colonnes de luminance → "
            "64 tonalités jouées en une seconde, en boucle."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("source", type=str, help="Fichier image (.png/.jpg/.jpeg) ou vidéo (.mp4/.avi/.m4v).")
    parser.add_argument(
        "--kind",
        type=str,
        choices=sorted(MEDIA_EXTENSIONS.keys()),
        default=None,
        help="Type de média (défaut : déduit de l'extension).",
    )
    parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Périphérique de sortie sounddevice (index ou nom, défaut : système).",
    )
    parser.add_argument(
        "--paused",
        action="store_true",
        help="Démarre la session en pause (aucun son tant qu'on ne relance pas).",
    )
    parser.add_argument(
        "--cycles",
        type=int,
        default=None,
        help="Arrête après N secondes jouées (défaut : jusqu'à Ctrl-C / fin de vidéo).",
    )
    parser.add_argument(
        "--no-click",
        action="store_true",
        help="Désactive le clic de repère joué à chaque cycle.",
    )
    parser.add_argument(
        "--click-wav",
        type=str,
        default=None,
        help="WAV PCM 8/16 bits à utiliser comme clic de repère.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Calcule tout sans ouvrir la sortie audio.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Niveau du journal (debug affiche chaque table de fréquences).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return parser


def _parse_device(raw: Optional[str]) -> Union[int, str, None]:
    if raw is None:
        return None
    return int(raw) if raw.isdigit() else raw


def build_session_config(args: argparse.Namespace) -> SessionConfig:
    if args.no_click:
        click = None
    elif args.click_wav:
        click = ClickCue(load_cue_wav(args.click_wav))
    else:
        click = ClickCue()
    return SessionConfig(click=click, max_cycles=args.cycles)


# ─────────────────────────────────────────────
#  Point d'entrée principal
# ─────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.cycles is not None and args.cycles <= 0:
        parser.error("--cycles doit être > 0")

    try:
        source = select_source(args.source, args.kind)
        config = build_session_config(args)
    except Image2ToneError as e:
        print(f"❌ {e}")
        return 2

    device = _parse_device(args.device)
    if args.dry_run:
        sink_factory = NullAudioSink
    else:
        def sink_factory():
            return SoundDeviceSink(device=device)

    def on_cycle(session: PlaybackSession, result: CycleResult) -> None:
        if result.status is CycleStatus.PLAYED:
            print(f"🔊 Cycle {session.cycles_played} joué ({source.kind})")

    controller = PlaybackController(
        display=LogDisplay(),
        audio_sink_factory=sink_factory,
        config=config,
        on_cycle=on_cycle,
    )

    session = controller.start(source, playing=not args.paused)
    print(f"✅ Session {session.id} : {args.source} ({'pause' if args.paused else 'lecture'})")

    # SIGINT → arrêt propre (stop + join), y compris pendant une attente
    interrupted = False

    def _on_sigint(signum, frame):
        nonlocal interrupted
        interrupted = True

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        while not interrupted and not session.join(timeout=0.2):
            pass
    finally:
        signal.signal(signal.SIGINT, previous)
        controller.stop()

    print(f"⏹️ Session {session.id} arrêtée après {session.cycles_played} cycle(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
