#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
live_tui.py
───────────
Interface TUI (terminal interactive) pour Image2Tone.

- Utilise image2tone_pkg.live_core.PlaybackController comme moteur.
- Affiche la trame réduite 64×64 (caractères ombrés) et le journal
  des fréquences par colonne.
- Le worker de lecture ne bloque jamais l'interface : il publie ses
  résultats dans TerminalDisplay, que la boucle curses redessine.

Raccourcis :
      - ESPACE : lecture / pause
      - o      : ouvrir un fichier (type déduit de l'extension)
      - q      : quitter

Dépendances :
    pip install numpy pillow sounddevice moviepy
"""

import argparse
import curses
import threading
from typing import List, Optional

import numpy as np

from image2tone_pkg.cli import configure_logging, select_source
from image2tone_pkg.errors import Image2ToneError
from image2tone_pkg.live_core import PlaybackController, SessionConfig
from image2tone_pkg.sinks import ClickCue, NullAudioSink, SoundDeviceSink


# Du plus sombre au plus clair
SHADES = " .:-=+*#%@"


# ─────────────────────────────────────────────
#  Affichage partagé worker → curses
# ─────────────────────────────────────────────

class TerminalDisplay:
    """
    Dernière trame + dernier journal reçus du worker.
    - show_frame / show_frequencies : appelés depuis le worker
    - snapshot() : lu par la boucle curses
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.grid: Optional[np.ndarray] = None
        self.lines: List[str] = []
        self.frames = 0

    def show_frame(self, grid: np.ndarray) -> None:
        with self.lock:
            self.grid = np.array(grid, copy=True)
            self.frames += 1

    def show_frequencies(self, text: str) -> None:
        with self.lock:
            self.lines = text.splitlines()

    def clear(self) -> None:
        with self.lock:
            self.grid = None
            self.lines = []

    def snapshot(self):
        with self.lock:
            return self.grid, list(self.lines), self.frames


def grid_rows(grid: np.ndarray, max_rows: int, max_cols: int) -> List[str]:
    """Grille → lignes de texte, sous-échantillonnée pour tenir à l'écran."""
    h, w = grid.shape
    step_y = max(1, -(-h // max(1, max_rows)))
    step_x = max(1, -(-w // max(1, max_cols)))
    small = grid[::step_y, ::step_x].astype(np.int64)
    idx = small * len(SHADES) // 256
    return ["".join(SHADES[i] for i in row) for row in idx]


# ─────────────────────────────────────────────
#  Helpers TUI
# ─────────────────────────────────────────────

def _draw_ui(stdscr, controller: PlaybackController, display: TerminalDisplay, status_msg: str):
    stdscr.erase()
    max_y, max_x = stdscr.getmaxyx()

    stdscr.addstr(0, 0, "Image2Tone Live TUI"[:max_x - 1], curses.A_BOLD)

    session = controller.current
    if session is None:
        info = "Aucune source : 'o' pour ouvrir un fichier"
    else:
        state = "PAUSE" if session.paused else "LECTURE"
        info = f"{session.source!r}  [{state}]  cycles: {session.cycles_played}"
    stdscr.addstr(1, 0, info[:max_x - 1])

    grid, lines, _ = display.snapshot()
    top = 3
    body_rows = max(1, max_y - top - 2)

    grid_w = 0
    if grid is not None:
        rows = grid_rows(grid, body_rows, max(1, max_x // 2))
        for i, row in enumerate(rows[:body_rows]):
            stdscr.addstr(top + i, 0, row[:max_x - 1])
        grid_w = (len(rows[0]) if rows else 0) + 2

    # Journal des fréquences à droite de la trame
    if grid_w < max_x - 10:
        for i, line in enumerate(lines[:body_rows]):
            stdscr.addstr(top + i, grid_w, line[:max_x - grid_w - 1])

    help_line = "ESPACE: lecture/pause | o: ouvrir | q: quitter"
    stdscr.addstr(max_y - 2, 0, help_line[:max_x - 1], curses.A_DIM)
    stdscr.addstr(max_y - 1, 0, status_msg[:max_x - 1], curses.A_BOLD)

    stdscr.refresh()


def _prompt_path(stdscr) -> str:
    max_y, max_x = stdscr.getmaxyx()
    prompt = "Fichier : "
    stdscr.move(max_y - 1, 0)
    stdscr.clrtoeol()
    stdscr.addstr(max_y - 1, 0, prompt[:max_x - 1])
    stdscr.refresh()

    curses.echo()
    stdscr.timeout(-1)
    try:
        raw_bytes = stdscr.getstr(max_y - 1, min(len(prompt), max_x - 1), max(1, max_x - len(prompt) - 1))
    finally:
        curses.noecho()
    try:
        return raw_bytes.decode("utf-8").strip()
    except UnicodeDecodeError:
        return ""


def _open_source(controller: PlaybackController, display: TerminalDisplay, path: str) -> str:
    try:
        source = select_source(path)
    except Image2ToneError as e:
        return f"Refusé : {e}"
    # L'ancienne session est arrêtée et attendue avant d'effacer l'écran :
    # la nouvelle y publie aussitôt son aperçu
    controller.stop()
    display.clear()
    session = controller.start(source, playing=False)
    return f"Session {session.id} ouverte (en pause) : ESPACE pour lire"


# ─────────────────────────────────────────────
#  Boucle principale curses
# ─────────────────────────────────────────────

def tui_main(stdscr, args):
    curses.curs_set(0)
    stdscr.keypad(True)

    display = TerminalDisplay()
    if args.dry_run:
        sink_factory = NullAudioSink
    else:
        sink_factory = SoundDeviceSink
    config = SessionConfig(click=None if args.no_click else ClickCue())
    controller = PlaybackController(display=display, audio_sink_factory=sink_factory, config=config)

    status = "Prêt."
    if args.source:
        status = _open_source(controller, display, args.source)

    try:
        while True:
            _draw_ui(stdscr, controller, display, status)
            # Redessin périodique : le worker publie en continu
            stdscr.timeout(100)
            ch = stdscr.getch()
            if ch == -1:
                continue

            if ch == ord('q'):
                break

            if ch in (ord(' '), ord('p')):
                paused = controller.toggle_pause()
                if paused is None:
                    status = "Aucune session active."
                else:
                    status = "Pause" if paused else "Lecture"
                continue

            if ch == ord('o'):
                path = _prompt_path(stdscr)
                status = _open_source(controller, display, path) if path else "Ouverture annulée."
                continue
    finally:
        controller.stop()


# ─────────────────────────────────────────────
#  Entry point
# ─────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="Interface TUI live pour Image2Tone (lecture / pause / ouverture)."
    )
    parser.add_argument("source", nargs="?", default=None, help="Image ou vidéo à ouvrir au démarrage")
    parser.add_argument("--dry-run", action="store_true", help="Pas de sortie audio")
    parser.add_argument("--no-click", action="store_true", help="Pas de clic de repère")
    parser.add_argument(
        "--log-file", type=str, default="image2tone.log",
        help="Fichier journal (curses occupe le terminal)",
    )
    args = parser.parse_args()

    # Le journal ne doit pas écrire sur l'écran curses
    configure_logging("info", filename=args.log_file)

    curses.wrapper(tui_main, args)


if __name__ == "__main__":
    main()
