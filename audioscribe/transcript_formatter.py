"""
Transcript formatting utilities.

The Speech-to-Text API returns a deeply nested structure where words are
nested within alternatives and results.  With speaker diarisation enabled,
the final result repeats every word of the recording together with its
speaker tag, so only that last result is read here.

Consecutive words from the same speaker are grouped on one line.  When more
than one speaker is expected, each new line starts with a label such as
``Speaker 2:``.
"""

from typing import Dict, Iterable, List

from .models import TranscriptLine


def last_result_words(data: Dict) -> List[Dict]:
    """Extract the word dictionaries of the last result's top alternative.

    Args:
        data: Dictionary form of a ``LongRunningRecognizeResponse``.

    Returns:
        A list of word dictionaries with keys like ``word`` and
        ``speakerTag``.  Empty when the response has no results.
    """
    results = data.get("results", [])
    if not results:
        return []
    alternatives = results[-1].get("alternatives", [])
    if not alternatives:
        return []
    return [wi for wi in alternatives[0].get("words", []) if "word" in wi]


def build_lines(words: Iterable[Dict], speaker_count: int) -> List[TranscriptLine]:
    """Group words into lines by speaker tag.

    The current speaker starts at tag 0, so words tagged 0 at the very
    beginning continue that implicit line and are never labelled.
    """
    lines: List[TranscriptLine] = []
    current_tag = 0
    for wi in words:
        word = wi["word"]
        tag = int(wi.get("speakerTag", 0))
        if tag == current_tag:
            if not lines:
                lines.append(TranscriptLine(tag))
            lines[-1].words.append(word)
        else:
            lines.append(TranscriptLine(tag, [word], labelled=speaker_count > 1))
            current_tag = tag
    return lines


def format_transcript(words: Iterable[Dict], speaker_count: int) -> str:
    """Convert word dictionaries into the final transcript text."""
    return "\n".join(line.render() for line in build_lines(words, speaker_count))
