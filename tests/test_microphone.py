from roomacoustic.microphone import MicrophoneDetector, has_microphone_access


class FakeDetector(MicrophoneDetector):
    def __init__(self, cards, capture, usb_ids):
        self.capture = capture
        self.usb_ids = usb_ids
        self.audio_cards = cards

    def _has_input_capability(self, card_index):
        return card_index in self.capture

    def _get_usb_id_from_proc(self, card_index):
        return self.usb_ids.get(card_index)


def test_microphone_access(tmp_path):
    pattern = str(tmp_path / "pcmC*D*c")
    assert not has_microphone_access(pattern)

    (tmp_path / "pcmC0D0p").write_bytes(b"")
    assert not has_microphone_access(pattern)

    (tmp_path / "pcmC1D0c").write_bytes(b"")
    assert has_microphone_access(pattern)


def test_detect_capture_cards():
    detector = FakeDetector(["HDMI", "Codec", "UMIK-1"], capture={1, 2}, usb_ids={2: "2752:0007"})
    assert detector.detect_capture_cards() == [(1, "Codec", None), (2, "UMIK-1", "2752:0007")]


def test_first_capture_card_prefers_usb():
    assert FakeDetector(["HDMI", "Codec", "UMIK-1"], {1, 2}, {2: "2752:0007"}).first_capture_card() == 2
    assert FakeDetector(["HDMI", "Codec"], {1}, {}).first_capture_card() == 1
    assert FakeDetector(["HDMI"], set(), {}).first_capture_card() is None
