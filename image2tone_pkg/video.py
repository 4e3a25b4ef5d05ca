# -*- coding: utf-8 -*-
"""
video.py
────────
Sources de trames pour le planificateur :

- ImageFrameSource    : image fixe (Pillow), relue à la demande
- VideoFrameSource    : trames décodées par MoviePy (import tardif)
- IteratorFrameSource : n'importe quel générateur de trames brutes

Contrat commun :
    open()  → acquiert la ressource (appelé par le worker propriétaire)
    read()  → RawFrame, ou None si aucune trame n'est prête
              EndOfStream à la fin du flux
              SourceUnreadableError si le décodage échoue
    close() → libère la ressource (idempotent)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Union

import numpy as np

from .errors import EndOfStream, SourceUnreadableError
from .image_proc import RawFrame, load_image_frame


logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    kind: str   # "image" ou "video"

    def open(self) -> None: ...

    def read(self) -> Optional[RawFrame]: ...

    def close(self) -> None: ...


class ImageFrameSource:
    """Image fixe : la même trame à chaque lecture."""

    kind = "image"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def open(self) -> None:
        pass

    def read(self) -> Optional[RawFrame]:
        return load_image_frame(self.path)

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"ImageFrameSource({str(self.path)!r})"


class VideoFrameSource:
    """
    Trames RGB d'un fichier vidéo via MoviePy.

    MoviePy est importé tardivement → pas d'erreur si on ne lit que des images.
    """

    kind = "video"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._clip = None
        self._frames: Optional[Iterator[np.ndarray]] = None

    def open(self) -> None:
        try:
            from moviepy import VideoFileClip
        except ImportError as e:
            raise RuntimeError(
                "La lecture vidéo nécessite le paquet 'moviepy'.\n"
                "Installe-le avec :\n"
                "    python3 -m pip install moviepy imageio-ffmpeg"
            ) from e

        if not self.path.exists():
            raise SourceUnreadableError(f"Vidéo introuvable : {self.path}")
        try:
            self._clip = VideoFileClip(str(self.path), audio=False)
        except (OSError, KeyError, ValueError) as e:
            raise SourceUnreadableError(f"Impossible d'ouvrir la vidéo : {self.path.name}") from e

        self._frames = self._clip.iter_frames(dtype="uint8")
        logger.info(
            "Vidéo ouverte : %s (%dx%d, %.2f fps, %.1f s)",
            self.path.name, self._clip.w, self._clip.h,
            float(self._clip.fps or 0.0), float(self._clip.duration or 0.0),
        )

    def read(self) -> Optional[RawFrame]:
        if self._frames is None:
            raise SourceUnreadableError("Vidéo non ouverte.")
        try:
            px = next(self._frames)
        except StopIteration:
            raise EndOfStream(str(self.path)) from None
        except (OSError, ValueError) as e:
            raise SourceUnreadableError(f"Décodage impossible : {e}") from e
        return RawFrame(pixels=np.asarray(px, dtype=np.uint8), channel_order="RGB")

    def close(self) -> None:
        clip, self._clip, self._frames = self._clip, None, None
        if clip is not None:
            clip.close()

    def __repr__(self) -> str:
        return f"VideoFrameSource({str(self.path)!r})"


class IteratorFrameSource:
    """
    Adapte un itérable de trames (décodeur externe).

    Un élément None signifie "pas de trame prête" ; l'épuisement de
    l'itérable signifie fin de flux.
    """

    def __init__(self, frames: Iterable[Optional[RawFrame]], kind: str = "video"):
        self.kind = kind
        self._iterable = frames
        self._frames: Optional[Iterator[Optional[RawFrame]]] = None
        self.closed = False

    def open(self) -> None:
        self._frames = iter(self._iterable)

    def read(self) -> Optional[RawFrame]:
        if self._frames is None:
            self.open()
        try:
            return next(self._frames)
        except StopIteration:
            raise EndOfStream("itérateur épuisé") from None

    def close(self) -> None:
        self.closed = True
