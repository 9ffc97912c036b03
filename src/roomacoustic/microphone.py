#!/usr/bin/env python3
"""
Microphone detection module for RoomAcoustic.

Finds ALSA cards with capture capability and checks whether the current
process may access the capture devices at all.
"""

import os
import glob
import logging
from typing import List, Tuple, Optional

logger = logging.getLogger(__name__)

CAPTURE_NODE_PATTERN = "/dev/snd/pcmC*D*c"


def has_microphone_access(pattern: str = CAPTURE_NODE_PATTERN) -> bool:
    """
    Check whether any ALSA capture device node is readable and writable.

    This is the Linux equivalent of a "record audio" permission: without
    access to a capture node (usually via the 'audio' group) no microphone
    can be opened.
    """
    nodes = glob.glob(pattern)
    if not nodes:
        logger.debug(f"No capture device nodes matching {pattern}")
        return False
    for node in nodes:
        if os.access(node, os.R_OK | os.W_OK):
            return True
    logger.debug(f"No accessible capture device among {len(nodes)} node(s)")
    return False


class MicrophoneDetector:
    """Detects ALSA cards that can record."""

    def __init__(self):
        self.audio_cards = self._get_audio_cards()

    def _get_audio_cards(self) -> List[str]:
        """Get list of available audio cards from ALSA."""
        try:
            import alsaaudio
            return alsaaudio.cards()
        except Exception as e:
            logger.error(f"Failed to get audio cards: {e}")
            return []

    def _has_input_capability(self, card_index: int) -> bool:
        """Check if a card can be opened for capture."""
        try:
            import alsaaudio
            pcm = alsaaudio.PCM(type=alsaaudio.PCM_CAPTURE, mode=alsaaudio.PCM_NORMAL,
                                device=f"hw:{card_index}")
            pcm.close()
            return True
        except Exception as e:
            logger.debug(f"Card {card_index} has no usable capture device: {e}")
            return False

    def _get_usb_id_from_proc(self, card_index: int) -> Optional[str]:
        try:
            with open(f"/proc/asound/card{card_index}/usbid", "r") as f:
                return f.read().strip()
        except (FileNotFoundError, IOError):
            return None

    def detect_capture_cards(self) -> List[Tuple[int, str, Optional[str]]]:
        """
        Detect all cards with capture capability.

        Returns:
            List of (card_index, card_name, usb_id) tuples
        """
        cards = []
        for card_index, card_name in enumerate(self.audio_cards):
            if not self._has_input_capability(card_index):
                continue
            cards.append((card_index, card_name, self._get_usb_id_from_proc(card_index)))
        return cards

    def first_capture_card(self) -> Optional[int]:
        """Index of the first card that can record, preferring USB measurement microphones."""
        cards = self.detect_capture_cards()
        if not cards:
            return None
        usb_cards = [c for c in cards if c[2]]
        card_index, card_name, _ = (usb_cards or cards)[0]
        logger.info(f"Using capture card {card_index} ({card_name})")
        return card_index


def main():
    """List capture cards and microphone access."""
    detector = MicrophoneDetector()
    print(f"Microphone access: {'granted' if has_microphone_access() else 'denied'}")
    for card_index, card_name, usb_id in detector.detect_capture_cards():
        print(f"{card_index}:{card_name}:{usb_id or 'N/A'}")
    return 0


if __name__ == "__main__":
    import sys
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
