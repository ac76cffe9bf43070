from hls_runner.encoding.encoders import (
    EncoderProbe,
    available_encoders,
    hardware_encoder,
    select,
)
from hls_runner.encoding.options import Encoder, VideoCodecFamily
from hls_runner.encoding.toolchain import Toolchain


def _probe(*supported):
    calls = []

    def probe(encoder):
        calls.append(encoder)
        return encoder in supported

    probe.calls = calls
    return probe


def test_override_is_returned_without_probing():
    probe = _probe()
    assert select(Encoder.H265_QSV, VideoCodecFamily.H264, probe) is Encoder.H265_QSV
    assert probe.calls == []


def test_h264_prefers_hardware_on_arm():
    probe = _probe(Encoder.H264_VIDEOTOOLBOX)
    assert select(None, VideoCodecFamily.H264, probe, machine="arm64") is Encoder.H264_VIDEOTOOLBOX


def test_h264_prefers_quicksync_on_x86():
    probe = _probe(Encoder.H264_QSV)
    assert select(None, VideoCodecFamily.H264, probe, machine="x86_64") is Encoder.H264_QSV


def test_h264_falls_back_to_software():
    probe = _probe()
    assert select(None, VideoCodecFamily.H264, probe, machine="x86_64") is Encoder.H264_SOFTWARE
    # libx264 is the last resort and never probed
    assert Encoder.H264_SOFTWARE not in probe.calls


def test_h265_order_hardware_then_software():
    probe = _probe(Encoder.H265_VIDEOTOOLBOX, Encoder.H265_SOFTWARE)
    assert select(None, VideoCodecFamily.H265, probe, machine="arm64") is Encoder.H265_VIDEOTOOLBOX

    probe = _probe(Encoder.H265_SOFTWARE)
    assert select(None, VideoCodecFamily.H265, probe, machine="arm64") is Encoder.H265_SOFTWARE


def test_h265_without_any_encoder_falls_back_to_h264_chain():
    probe = _probe(Encoder.H264_QSV)
    assert select(None, VideoCodecFamily.H265, probe, machine="x86_64") is Encoder.H264_QSV

    probe = _probe()
    assert select(None, VideoCodecFamily.H265, probe, machine="riscv64") is Encoder.H264_SOFTWARE


def test_unknown_architecture_has_no_hardware_encoder():
    assert hardware_encoder(VideoCodecFamily.H264, machine="riscv64") is None
    assert hardware_encoder(VideoCodecFamily.H265, machine="AMD64") is Encoder.H265_QSV


def test_encoder_properties():
    assert Encoder.H265_QSV.family is VideoCodecFamily.H265
    assert Encoder.H264_VIDEOTOOLBOX.is_hardware
    assert not Encoder.H264_SOFTWARE.is_hardware
    assert Encoder.H264_SOFTWARE.display_name == "H.264 Software Renderer"


def test_encoder_probe_lists_and_preflights(make_toolchain):
    toolchain = make_toolchain(encoders=("libx264", "h264_qsv"))
    probe = EncoderProbe(toolchain, timeout=10)

    assert probe(Encoder.H264_QSV) is True
    assert probe(Encoder.H265_SOFTWARE) is False
    support = available_encoders(probe)
    assert support[Encoder.H264_SOFTWARE] is True
    assert support[Encoder.H265_QSV] is False


def test_encoder_probe_without_ffmpeg_supports_nothing(tmp_path):
    probe = EncoderProbe(Toolchain(ffmpeg=str(tmp_path / "missing")))
    assert not any(available_encoders(probe).values())
