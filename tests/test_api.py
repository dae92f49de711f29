from __future__ import annotations

import base64


def test_voice_query_returns_answer_and_audio(client, fake_orchestrator):
    response = client.post(
        "/api/voice-query",
        files={"audio": ("question.wav", b"RIFF....WAVE", "audio/wav")},
        data={"voiceName": "en-US-AriaNeural", "rate": "fast"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["question"] == "what is the return policy"
    assert payload["answer"] == "Items can be returned within 14 days."
    assert base64.b64decode(payload["audio"]) == b"ID3-fake-mp3"
    assert payload["audioMime"] == "audio/mpeg"
    assert payload["timestamp"]

    voice = fake_orchestrator.voices[0]
    assert voice.voice_name == "en-US-AriaNeural"
    assert voice.rate == "fast"
    assert voice.pitch == "medium"

    upload_path, upload_bytes = fake_orchestrator.uploads[0]
    assert upload_bytes == b"RIFF....WAVE"
    assert upload_path.suffix == ".wav"
    assert not upload_path.exists()
    assert list(fake_orchestrator.temp_dir.iterdir()) == []


def test_voice_query_without_speech_returns_400(client, fake_orchestrator):
    fake_orchestrator.transcript = ""

    response = client.post(
        "/api/voice-query",
        files={"audio": ("silence.wav", b"RIFF....WAVE", "audio/wav")},
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "No speech detected"
    assert payload["question"] == ""
    assert payload["answer"] is None
    assert payload["audio"] is None


def test_voice_query_missing_file_returns_422(client):
    response = client.post("/api/voice-query")
    assert response.status_code == 422


def test_voice_query_rejects_non_audio_upload(client, fake_orchestrator):
    response = client.post(
        "/api/voice-query",
        files={"audio": ("notes.txt", b"not audio", "text/plain")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Only audio files are allowed.", "code": "InputError"}
    assert fake_orchestrator.uploads == []


def test_voice_query_rejects_empty_upload(client, fake_orchestrator):
    response = client.post(
        "/api/voice-query",
        files={"audio": ("question.m4a", b"", "audio/mp4")},
    )

    assert response.status_code == 400
    assert fake_orchestrator.uploads == []
    assert list(fake_orchestrator.temp_dir.iterdir()) == []


def test_voice_query_base64(client, fake_orchestrator):
    response = client.post(
        "/api/voice-query-base64",
        json={
            "audioBase64": base64.b64encode(b"OggS-fake").decode(),
            "format": "ogg",
            "voiceOptions": {"voiceName": "de-CH-LeniNeural"},
        },
    )

    assert response.status_code == 200
    assert response.json()["answer"] == "Items can be returned within 14 days."
    upload_path, upload_bytes = fake_orchestrator.uploads[0]
    assert upload_bytes == b"OggS-fake"
    assert upload_path.suffix == ".ogg"
    assert fake_orchestrator.voices[0].voice_name == "de-CH-LeniNeural"
    assert not upload_path.exists()


def test_voice_query_base64_rejects_garbage(client, fake_orchestrator):
    response = client.post("/api/voice-query-base64", json={"audioBase64": "!!not base64!!"})

    assert response.status_code == 400
    assert response.json()["code"] == "InputError"
    assert fake_orchestrator.uploads == []


def test_text_query_returns_timing(client, fake_orchestrator):
    response = client.post(
        "/api/query",
        json={"query": "What is the return policy?", "top": 3, "temperature": 0.1, "includeContext": True},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "Items can be returned within 14 days."
    assert payload["documentsFound"] == 2
    assert payload["timing"] == {"searchTime": 12.5, "completionTime": 340.0, "totalTime": 360.1}
    assert payload["usage"] == {"total_tokens": 42}
    assert payload["context"] == {"documents": [], "prompt": "..."}

    call = fake_orchestrator.text_calls[0]
    assert call["search"].top == 3
    assert call["generation"].temperature == 0.1
    assert call["generation"].max_tokens == 800
    assert call["include_context"] is True


def test_text_query_requires_query(client):
    assert client.post("/api/query", json={"query": ""}).status_code == 422


def test_speech_to_text(client, fake_orchestrator):
    response = client.post(
        "/api/speech-to-text",
        files={"audio": ("question.webm", b"webm-bytes", "audio/webm")},
    )

    assert response.status_code == 200
    assert response.json() == {
        "text": "what is the return policy",
        "confidence": 0.91,
        "duration": 2.1,
        "message": None,
    }


def test_speech_to_text_without_speech_is_not_an_error(client, fake_orchestrator):
    fake_orchestrator.transcript = ""

    response = client.post(
        "/api/speech-to-text",
        files={"audio": ("silence.wav", b"RIFF....WAVE", "audio/wav")},
    )

    assert response.status_code == 200
    assert response.json()["text"] == ""
    assert response.json()["message"] == "No speech detected in audio"


def test_text_to_speech_streams_audio(client, fake_orchestrator):
    response = client.post("/api/text-to-speech", json={"text": "Hello", "voiceName": "en-US-AriaNeural"})

    assert response.status_code == 200
    assert response.content == b"ID3-fake-mp3"
    assert response.headers["content-type"] == "audio/mpeg"
    assert "speech.mp3" in response.headers["content-disposition"]
    assert fake_orchestrator.synthesized[0][1].voice_name == "en-US-AriaNeural"


def test_text_to_speech_json(client):
    response = client.post("/api/text-to-speech", json={"text": "Hello", "format": "json"})

    assert response.status_code == 200
    payload = response.json()
    assert base64.b64decode(payload["audioBase64"]) == b"ID3-fake-mp3"
    assert payload["format"] == "mp3"
    assert payload["voiceUsed"] == "en-US-JennyNeural"


def test_synthesize_ssml(client, fake_orchestrator):
    response = client.post("/api/synthesize-ssml", json={"ssml": "<speak>Hello</speak>"})

    assert response.status_code == 200
    assert fake_orchestrator.synthesized == [("<speak>Hello</speak>", None)]


def test_voices_lists_popular_english_neural_voices(client):
    payload = client.get("/api/voices").json()

    assert payload["totalVoices"] == 3
    assert [voice["name"] for voice in payload["popularVoices"]] == ["en-US-JennyNeural"]


def test_health(client):
    payload = client.get("/api/health").json()

    assert payload["status"] == "ok"
    assert payload["search"]["documentCount"] == 42


def test_orchestrator_is_built_once_from_settings_until_reset(monkeypatch, settings):
    import api.dependencies as deps
    import pipeline.orchestrator as orchestrator_module

    built = []

    class RecordingOrchestrator:
        def __init__(self, *, settings):
            built.append(settings)

    monkeypatch.setattr(orchestrator_module, "PipelineOrchestrator", RecordingOrchestrator)
    monkeypatch.setattr(deps, "get_settings", lambda: settings)
    deps.reset_orchestrator()
    try:
        first = deps.get_orchestrator()
        assert deps.get_orchestrator() is first
        assert built == [settings]

        deps.reset_orchestrator()
        assert deps.get_orchestrator() is not first
        assert len(built) == 2
    finally:
        deps.reset_orchestrator()
