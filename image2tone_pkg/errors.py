# -*- coding: utf-8 -*-
"""
errors.py
─────────
Exceptions du pipeline Image2Tone.

Aucune n'est fatale : le planificateur les attrape par cycle, les journalise
et passe au cycle suivant (voir live_core.run_cycle).
"""


class Image2ToneError(Exception):
    """Base commune des erreurs Image2Tone."""


class SourceUnreadableError(Image2ToneError, ValueError):
    """Image / trame vide, illisible ou impossible à décoder."""


class StageComputationError(Image2ToneError, RuntimeError):
    """Échec numérique pendant la réduction, le mapping ou la synthèse."""


class SinkUnavailableError(Image2ToneError, RuntimeError):
    """Sortie audio (ou affichage) impossible à acquérir."""


class UnsupportedMediaError(Image2ToneError, ValueError):
    """Extension de fichier hors liste autorisée pour le type demandé."""


class EndOfStream(Image2ToneError):
    """Fin du flux vidéo : termine la session, ce n'est pas une panne."""
