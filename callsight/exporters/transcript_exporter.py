"""
callsight/exporters/transcript_exporter.py
Renders a processed transcription for downstream tools.

FORMATS:
  json      — full record: fields, metadata, summary, key insights
  markdown  — human-readable report
  ldm       — line-delimited messages (one JSON object per line):
              system context, transcript as user, summary as assistant.
              Ready to append to a chat fine-tuning / memory file.
  vector    — JSON document of fixed-size chunks with positional ids,
              ready for an embedding/vector-index job

Unknown format → ValidationFailure. An unprocessed transcription still
exports; derived sections are simply empty.
"""

import json
from typing import Any, Callable, Dict

from callsight.errors import ValidationFailure
from callsight.models.record import Transcription
from callsight.serialize import to_dict

EXPORT_FORMAT_VERSION = '1.0'

MEDIA_TYPES = {
    'json':     'application/json',
    'markdown': 'text/markdown',
    'ldm':      'application/x-ndjson',
    'vector':   'application/json',
}


def _exports(t: Transcription) -> Dict[str, Any]:
    return t.exports or {'summary': '', 'key_insights': [], 'vector_chunks': []}


def _metadata(t: Transcription) -> Dict[str, Any]:
    if t.metadata is None:
        return {'word_count': len((t.text or '').split()), 'speakers': [],
                'topics': [], 'action_items': [], 'sentiment': None}
    return to_dict(t.metadata)


def export_json(t: Transcription) -> str:
    exports = _exports(t)
    payload = {
        'export_format_version': EXPORT_FORMAT_VERSION,
        'sid':               t.sid,
        'text':              t.text,
        'status':            t.status,
        'recording_sid':     t.recording_sid,
        'call_sid':          t.call_sid,
        'confidence':        t.confidence,
        'created_at':        t.created_at.isoformat(),
        'transcription_url': t.transcription_url,
        'audio_url':         t.audio_url,
        'processed':         t.processed,
        'metadata':          _metadata(t),
        'summary':           exports.get('summary', ''),
        'key_insights':      exports.get('key_insights', []),
    }
    return json.dumps(payload, indent=2)


def export_markdown(t: Transcription) -> str:
    exports = _exports(t)
    meta    = _metadata(t)

    lines = [
        f"# Call Transcription {t.sid}",
        '',
        f"- **Call:** {t.call_sid}",
        f"- **Recording:** {t.recording_sid}",
        f"- **Date:** {t.created_at.isoformat()}",
        f"- **Confidence:** {t.confidence:.2f}",
        f"- **Words:** {meta['word_count']}",
        f"- **Sentiment:** {meta['sentiment'] or 'unprocessed'}",
    ]
    if meta['speakers']:
        lines.append(f"- **Speakers:** {', '.join(meta['speakers'])}")

    if exports.get('summary'):
        lines += ['', '## Summary', '', exports['summary']]
    if meta['topics']:
        lines += ['', '## Topics', ''] + [f"- {topic}" for topic in meta['topics']]
    if meta['action_items']:
        lines += ['', '## Action Items', ''] + [f"- [ ] {item}" for item in meta['action_items']]
    if exports.get('key_insights'):
        lines += ['', '## Key Insights', ''] + [f"- {item}" for item in exports['key_insights']]

    lines += ['', '## Transcript', '', t.text or '', '']
    return '\n'.join(lines)


def export_ldm(t: Transcription) -> str:
    exports = _exports(t)
    meta    = _metadata(t)
    context = f"Phone call transcription {t.sid} (call {t.call_sid}, {t.created_at.isoformat()})."
    if meta['topics']:
        context += f" Topics: {', '.join(meta['topics'])}."

    messages = [
        {'role': 'system', 'content': context},
        {'role': 'user',   'content': t.text or ''},
    ]
    if exports.get('summary'):
        messages.append({'role': 'assistant', 'content': exports['summary']})
    return '\n'.join(json.dumps(m) for m in messages) + '\n'


def export_vector(t: Transcription) -> str:
    meta   = _metadata(t)
    chunks = _exports(t).get('vector_chunks', [])
    shared = {
        'transcription_sid': t.sid,
        'call_sid':          t.call_sid,
        'created_at':        t.created_at.isoformat(),
        'sentiment':         meta['sentiment'],
        'topics':            meta['topics'],
    }
    payload = {
        'export_format_version': EXPORT_FORMAT_VERSION,
        'transcription_sid':     t.sid,
        'chunk_count':           len(chunks),
        'chunks': [{**chunk, 'metadata': shared} for chunk in chunks],
    }
    return json.dumps(payload, indent=2)


EXPORTERS: Dict[str, Callable[[Transcription], str]] = {
    'json':     export_json,
    'markdown': export_markdown,
    'ldm':      export_ldm,
    'vector':   export_vector,
}


def export_transcription(t: Transcription, fmt: str) -> str:
    exporter = EXPORTERS.get((fmt or '').lower())
    if exporter is None:
        raise ValidationFailure(
            f"Unknown export format: {fmt!r} (expected one of {', '.join(EXPORTERS)})"
        )
    return exporter(t)
