import asyncio
import json
import os

import pytest

from audioscribe import audio_processor
from audioscribe.audio_processor import Reencoder
from audioscribe.errors import JobCancelled, ReencodeFailed, SourceNotFound

MEDIA_INFO = {
    'streams': [
        {'index': 0, 'codec_type': 'video'},
        {'index': 1, 'codec_type': 'audio', 'duration': '10.000000'},
    ],
    'format': {'duration': '10.000000'},
}


class FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def read(self):
        data, self._chunks = b''.join(self._chunks), []
        return data


class FakeProcess:
    def __init__(self, lines, returncode=0, stderr=b''):
        self.stdout = FakeStream(lines)
        self.stderr = FakeStream([stderr])
        self.returncode = None
        self._exit = returncode
        self.killed = False

    async def wait(self):
        self.returncode = -9 if self.killed else self._exit
        return self.returncode

    async def communicate(self):
        stdout, stderr = await self.stdout.read(), await self.stderr.read()
        await self.wait()
        return stdout, stderr

    def kill(self):
        self.killed = True


@pytest.fixture
def temp_dir(tmp_path):
    d = tmp_path / 'tmp'
    d.mkdir()
    return d


@pytest.fixture
def source(tmp_path):
    src = tmp_path / 'interview.m4a'
    src.write_bytes(b'not really audio')
    return src


def _fake_ffmpeg(monkeypatch, lines, returncode=0, stderr_output=b'', info=MEDIA_INFO, inspections=None):
    calls = []

    async def create_subprocess_exec(*args, **kwargs):
        if '-show_streams' in args:
            if inspections is not None:
                inspections.append(args)
            return FakeProcess([json.dumps(info).encode()])
        with open(args[-1], 'wb') as f:
            f.write(b'fLaC')
        proc = FakeProcess(lines, returncode, stderr_output)
        calls.append((args, proc))
        return proc

    monkeypatch.setattr(audio_processor.asyncio, 'create_subprocess_exec', create_subprocess_exec)
    return calls


def test_parse_progress_line():
    assert audio_processor.parse_progress_line('out_time_us=2500000\n') == 2.5
    assert audio_processor.parse_progress_line('out_time_ms=1000000') == 1.0
    assert audio_processor.parse_progress_line('out_time_us=N/A') is None
    assert audio_processor.parse_progress_line('progress=continue') is None


def test_progress_percent_is_bounded():
    assert audio_processor.progress_percent(5, 10) == 50.0
    assert audio_processor.progress_percent(12, 10) == 100.0
    assert audio_processor.progress_percent(-1, 10) == 0.0
    assert audio_processor.progress_percent(1, 0) == 0.0


def test_is_supported_audio():
    assert audio_processor.is_supported_audio('a/b/c.MP3')
    assert not audio_processor.is_supported_audio('notes.txt')


def test_cleanup_temp_file(tmp_path):
    path = tmp_path / 'x.flac'
    path.write_bytes(b'x')
    audio_processor.cleanup_temp_file(str(path))
    assert not path.exists()
    audio_processor.cleanup_temp_file(str(path))
    audio_processor.cleanup_temp_file(None)


def test_missing_source_has_no_side_effects(monkeypatch, tmp_path, temp_dir):
    inspections = []
    calls = _fake_ffmpeg(monkeypatch, [], inspections=inspections)
    with pytest.raises(SourceNotFound):
        asyncio.run(Reencoder('ffmpeg', str(temp_dir)).convert(str(tmp_path / 'missing.wav')))
    assert os.listdir(temp_dir) == []
    assert inspections == calls == []


def test_convert_reencodes_first_audio_stream(monkeypatch, source, temp_dir):
    calls = _fake_ffmpeg(
        monkeypatch,
        [b'out_time_us=2500000\n', b'progress=continue\n', b'out_time_us=10000000\n', b'progress=end\n'],
    )
    progress = []

    out = asyncio.run(
        Reencoder('/opt/ffmpeg', str(temp_dir)).convert(str(source), on_progress=progress.append)
    )

    assert os.path.dirname(out) == str(temp_dir)
    assert out.endswith('.flac')
    assert os.path.exists(out)
    assert progress == [25.0, 100.0]
    args = calls[0][0]
    assert args[0] == '/opt/ffmpeg'
    for flag, value in (('-map', '0:1'), ('-c:a', 'flac'), ('-ar', '48000'), ('-ac', '1'), ('-sample_fmt', 's16')):
        assert args[args.index(flag) + 1] == value


def test_output_names_are_unique(monkeypatch, source, temp_dir):
    _fake_ffmpeg(monkeypatch, [])
    reencoder = Reencoder('ffmpeg', str(temp_dir))
    first = asyncio.run(reencoder.convert(str(source)))
    second = asyncio.run(reencoder.convert(str(source)))
    assert first != second


def test_no_audio_stream(monkeypatch, source, temp_dir):
    _fake_ffmpeg(monkeypatch, [], info={'streams': [{'index': 0, 'codec_type': 'video'}]})
    with pytest.raises(ReencodeFailed) as excinfo:
        asyncio.run(Reencoder('ffmpeg', str(temp_dir)).convert(str(source)))
    assert isinstance(excinfo.value.cause, ValueError)
    assert os.listdir(temp_dir) == []


def test_ffmpeg_failure_removes_partial_output(monkeypatch, source, temp_dir):
    _fake_ffmpeg(monkeypatch, [b'out_time_us=1000000\n'], returncode=1, stderr_output=b'Invalid data found')
    with pytest.raises(ReencodeFailed) as excinfo:
        asyncio.run(Reencoder('ffmpeg', str(temp_dir)).convert(str(source)))
    assert 'Invalid data found' in str(excinfo.value.cause)
    assert os.listdir(temp_dir) == []


def test_cancel_kills_ffmpeg(monkeypatch, source, temp_dir):
    calls = _fake_ffmpeg(monkeypatch, [b'out_time_us=1000000\n', b'out_time_us=2000000\n'])

    async def go():
        cancel = asyncio.Event()
        cancel.set()
        return await Reencoder('ffmpeg', str(temp_dir)).convert(str(source), cancel=cancel)

    with pytest.raises(JobCancelled):
        asyncio.run(go())
    assert calls[0][1].killed
    assert os.listdir(temp_dir) == []


def test_ffprobe_runs_from_the_ffmpeg_directory(monkeypatch, source, temp_dir):
    inspections = []
    calls = _fake_ffmpeg(monkeypatch, [], inspections=inspections)

    asyncio.run(Reencoder('/opt/tools/ffmpeg', str(temp_dir)).convert(str(source)))

    assert inspections[0][0] == os.path.join('/opt/tools', 'ffprobe')
    assert inspections[0][-1] == str(source)
    assert calls[0][0][0] == '/opt/tools/ffmpeg'


@pytest.mark.parametrize('ffmpeg_path, expected', [
    ('/opt/tools/ffmpeg', os.path.join('/opt/tools', 'ffprobe')),
    (os.path.join('C:', 'ffmpeg', 'bin', 'ffmpeg.exe'), os.path.join('C:', 'ffmpeg', 'bin', 'ffprobe.exe')),
    ('ffmpeg', None),
])
def test_sibling_ffprobe(ffmpeg_path, expected):
    assert audio_processor.sibling_ffprobe(ffmpeg_path) == expected


def test_bare_ffmpeg_name_uses_ffprobe_on_path(monkeypatch):
    monkeypatch.setattr(audio_processor, 'get_prober_name', lambda: 'ffprobe')
    assert Reencoder('ffmpeg').ffprobe_path == 'ffprobe'
    assert Reencoder('ffmpeg', ffprobe_path='/usr/local/bin/ffprobe').ffprobe_path == '/usr/local/bin/ffprobe'


def test_ffprobe_failure_is_a_reencode_error(monkeypatch, source, temp_dir):
    async def create_subprocess_exec(*args, **kwargs):
        return FakeProcess([], returncode=1, stderr=b'moov atom not found')

    monkeypatch.setattr(audio_processor.asyncio, 'create_subprocess_exec', create_subprocess_exec)
    with pytest.raises(ReencodeFailed) as excinfo:
        asyncio.run(Reencoder('ffmpeg', str(temp_dir)).convert(str(source)))
    assert 'moov atom not found' in str(excinfo.value.cause)
    assert os.listdir(temp_dir) == []
