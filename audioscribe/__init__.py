"""
Speaker-attributed transcription of local audio recordings.

This package reencodes a recording with ffmpeg, stages it in Google Cloud
Storage, runs diarised Google Speech-to-Text on it, then removes the staged
copy.  :class:`audioscribe.tasks.AudioPipeline` drives the stages and
publishes status events for a presentation layer to display.
"""
