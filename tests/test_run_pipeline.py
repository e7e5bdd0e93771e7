"""End-to-end tests for the comparison and enrollment workflows."""

import json
import time

import numpy as np
import pytest

from conftest import AADHAAR_TEXT, FixedVectorBackend, StaticEngine, noise_image, vectors_with_score
from verification import run_pipeline as run_pipeline_module
from verification.checks import DocumentChecks
from verification.decision import DecisionEngine
from verification.digilocker import DigiLockerClient
from verification.embedding import EmbeddingExtractor
from verification.errors import DigiLockerError, ImageDecodeError
from verification.extractor import DocumentOCR, NullEngine, OCREngine
from verification.hashing import verify_fingerprint
from verification.liveness import LivenessDetector
from verification.models import IdentityAuthority
from verification.run_pipeline import VerificationPipeline, new_transaction_id, run_pipeline

TXN = "TXN-1700000000000-abcdef0123"


def make_pipeline(vectors, text=AADHAAR_TEXT, lenient=True, engine=None, ocr_timeout=None):
    checks = DocumentChecks(lenient=lenient, min_text_length=10)
    return VerificationPipeline(
        embedder=EmbeddingExtractor(primary=FixedVectorBackend(vectors)),
        ocr=DocumentOCR(engine=engine or StaticEngine(text), checks=checks, timeout=ocr_timeout),
        liveness=LivenessDetector(fail_open=True),
        checks=checks,
        decision=DecisionEngine(excerpt_length=100, require_enrollment_liveness=False),
        document_type="aadhaar",
    )


@pytest.fixture
def matching_pipeline():
    face, ref = vectors_with_score(0.86)
    return make_pipeline({320: face, 640: ref})


@pytest.mark.asyncio
async def test_comparison_same_person(matching_pipeline, face_png, document_png):
    decision = await matching_pipeline.compare(face_png, document_png, TXN, threshold=0.6)

    assert decision.verified
    assert decision.mode == "comparison"
    assert decision.score == pytest.approx(0.86)
    assert decision.threshold == 0.6
    assert decision.liveness.is_live
    assert decision.document_valid
    assert decision.failure_stage is None
    assert decision.embedding.shape == (128,)
    assert not decision.embedding.flags.writeable
    assert verify_fingerprint(document_png, TXN, decision.fingerprint)
    assert "XXXX XXXX 9944" in decision.ocr_excerpt
    assert "6477 7450" not in decision.ocr_excerpt


@pytest.mark.asyncio
async def test_comparison_different_person(face_png, document_png):
    face, ref = vectors_with_score(0.45)
    decision = await make_pipeline({320: face, 640: ref}).compare(face_png, document_png, TXN, threshold=0.6)

    assert not decision.verified
    assert decision.failure_stage == "biometric"
    assert decision.score == pytest.approx(0.45)
    assert decision.embedding is None
    assert decision.details["reasons"] == ["SCORE_BELOW_THRESHOLD"]


@pytest.mark.asyncio
async def test_comparison_low_resolution_face_fails_liveness(document_png):
    face, ref = vectors_with_score(0.95)
    decision = await make_pipeline({150: face, 640: ref}).compare(
        noise_image(150, 150), document_png, TXN, threshold=0.6
    )

    assert not decision.verified
    assert not decision.liveness.is_live
    assert decision.liveness.reason == "resolution too low"
    assert decision.details["reasons"] == ["LIVENESS_FAILED"]


@pytest.mark.asyncio
async def test_comparison_without_ocr_engine_is_lenient(face_png, document_png):
    face, ref = vectors_with_score(0.9)
    pipeline = make_pipeline({320: face, 640: ref}, engine=NullEngine())
    decision = await pipeline.compare(face_png, document_png, TXN, threshold=0.6)
    assert decision.document_valid
    assert decision.ocr_excerpt == ""
    assert decision.verified


@pytest.mark.asyncio
async def test_comparison_requires_transaction_id(matching_pipeline, face_png, document_png):
    with pytest.raises(ValueError):
        await matching_pipeline.compare(face_png, document_png, "")


@pytest.mark.asyncio
async def test_comparison_undecodable_face_raises(matching_pipeline, document_png):
    with pytest.raises(ImageDecodeError):
        await matching_pipeline.compare(b"not an image", document_png, TXN)


@pytest.mark.asyncio
async def test_comparison_shape_mismatch_is_a_biometric_failure(face_png, document_png):
    class UnevenExtractor:
        backend_name = "uneven"

        def extract(self, data):
            return np.ones(128) if data is face_png else np.ones(64)

    pipeline = make_pipeline({})
    pipeline.embedder = UnevenExtractor()
    decision = await pipeline.compare(face_png, document_png, TXN, threshold=0.6)

    assert not decision.verified
    assert decision.failure_stage == "biometric"
    assert decision.score is None
    assert decision.details["reasons"] == ["EMBEDDING_SHAPE_MISMATCH"]


@pytest.mark.asyncio
async def test_enrollment_matching_document(face_png, document_png):
    pipeline = make_pipeline({320: np.ones(128)})
    decision = await pipeline.enroll(face_png, document_png, TXN, "Ravi Kumar Sharma", "647774509944")

    assert decision.verified
    assert decision.mode == "enrollment"
    assert decision.score is None
    assert decision.embedding is not None
    assert decision.details["ocr"]["id_match"]
    assert decision.details["ocr"]["extracted_id"] == "XXXX XXXX 9944"


@pytest.mark.asyncio
async def test_enrollment_id_mismatch_fails_at_ocr_stage(face_png, document_png):
    pipeline = make_pipeline({320: np.ones(128)})
    decision = await pipeline.enroll(face_png, document_png, TXN, "Ravi Kumar Sharma", "111111111111")

    assert not decision.verified
    assert decision.failure_stage == "ocr"
    assert decision.error == "Uploaded document details do not match entered information"
    assert decision.embedding is None
    assert decision.fingerprint is not None


@pytest.mark.asyncio
async def test_enrollment_low_resolution_face_is_a_warning(document_png):
    pipeline = make_pipeline({150: np.ones(128)})
    decision = await pipeline.enroll(noise_image(150, 150), document_png, TXN, "Ravi Kumar", "647774509944")

    assert decision.verified
    assert not decision.liveness.is_live
    assert "LIVENESS_FAILED" in decision.details["warnings"]


@pytest.mark.asyncio
async def test_enrollment_against_consistent_authority(face_png, document_png):
    authority = IdentityAuthority(name="Ravi Kumar Sharma", id_number="647774509944")
    pipeline = make_pipeline({320: np.ones(128)})
    decision = await pipeline.enroll(
        face_png, document_png, TXN, "Ravi Kumar", "6477 7450 9944", authority=authority
    )
    assert decision.verified


@pytest.mark.asyncio
async def test_enrollment_authority_mismatch_fails_at_digilocker_stage(face_png, document_png):
    authority = IdentityAuthority(name="Ravi Kumar Sharma", id_number="999988887777")
    pipeline = make_pipeline({320: np.ones(128)})
    decision = await pipeline.enroll(
        face_png, document_png, TXN, "Ravi Kumar Sharma", "647774509944", authority=authority
    )
    assert not decision.verified
    assert decision.failure_stage == "digilocker"
    assert decision.details["authority_issues"] == ["AUTHORITY_ID_MISMATCH"]


def test_run_pipeline_sync_comparison(matching_pipeline, face_png, document_png):
    decision = run_pipeline("comparison", face_png, document_png, threshold=0.6, pipeline=matching_pipeline)
    assert decision.verified


def test_run_pipeline_generates_transaction_id(matching_pipeline, face_png, document_png, mocker):
    spy = mocker.spy(run_pipeline_module, "new_transaction_id")
    run_pipeline("comparison", face_png, document_png, pipeline=matching_pipeline)
    assert spy.call_count == 1


def test_run_pipeline_enrollment_requires_declared_identity(matching_pipeline, face_png, document_png):
    with pytest.raises(ValueError):
        run_pipeline("enrollment", face_png, document_png, declared_name="Ravi Kumar", pipeline=matching_pipeline)


def test_run_pipeline_rejects_unknown_mode(matching_pipeline, face_png, document_png):
    with pytest.raises(ValueError, match="Unknown verification mode"):
        run_pipeline("login", face_png, document_png, pipeline=matching_pipeline)


def test_transaction_ids_are_unique():
    first, second = new_transaction_id(), new_transaction_id()
    assert first.startswith("TXN-")
    assert first != second


def test_cli_comparison(tmp_path, monkeypatch, capsys, matching_pipeline, face_png, document_png):
    face_path = tmp_path / "face.png"
    ref_path = tmp_path / "ref.png"
    face_path.write_bytes(face_png)
    ref_path.write_bytes(document_png)
    monkeypatch.setattr(VerificationPipeline, "from_settings", classmethod(lambda cls: matching_pipeline))
    monkeypatch.setattr(run_pipeline_module, "configure_logging", lambda: None)

    code = run_pipeline_module.main([
        "comparison", "--face", str(face_path), "--reference", str(ref_path), "--txn", TXN,
    ])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["verified"] is True
    assert payload["embedding"] == "<128 floats>"


def test_cli_enrollment_mismatch_exits_nonzero(tmp_path, monkeypatch, capsys, face_png, document_png):
    face_path = tmp_path / "face.png"
    doc_path = tmp_path / "doc.png"
    face_path.write_bytes(face_png)
    doc_path.write_bytes(document_png)
    pipeline = make_pipeline({320: np.ones(128)})
    monkeypatch.setattr(VerificationPipeline, "from_settings", classmethod(lambda cls: pipeline))
    monkeypatch.setattr(run_pipeline_module, "configure_logging", lambda: None)

    code = run_pipeline_module.main([
        "enrollment", "--face", str(face_path), "--document", str(doc_path),
        "--name", "Ravi Kumar Sharma", "--id", "111111111111",
    ])

    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert payload["failure_stage"] == "ocr"
    assert payload["embedding"] is None


class SlowEngine(OCREngine):
    name = "slow"

    def recognize(self, png, timeout):
        time.sleep(2.0)
        return AADHAAR_TEXT


def test_run_pipeline_returns_at_the_ocr_deadline(face_png, document_png):
    face, ref = vectors_with_score(0.9)
    pipeline = make_pipeline({320: face, 640: ref}, engine=SlowEngine(), ocr_timeout=0.3)

    started = time.perf_counter()
    decision = run_pipeline("comparison", face_png, document_png, threshold=0.6, pipeline=pipeline)
    elapsed = time.perf_counter() - started

    assert elapsed < 1.5
    assert decision.ocr_excerpt == ""
    assert decision.document_valid
    assert decision.verified


@pytest.mark.asyncio
async def test_enrollment_rejects_undecodable_document_without_ocr(face_png):
    pipeline = make_pipeline({320: np.ones(128)}, engine=NullEngine())
    with pytest.raises(ImageDecodeError):
        await pipeline.enroll(face_png, b"definitely not an image", TXN, "Ravi Kumar", "647774509944")


def test_run_pipeline_fetches_authority_with_token(face_png, document_png, mocker):
    client = mocker.MagicMock(spec=DigiLockerClient)
    client.verify_aadhaar.return_value = IdentityAuthority(name="Ravi Kumar Sharma", id_number="999988887777")
    pipeline = make_pipeline({320: np.ones(128)})

    decision = run_pipeline(
        "enrollment", face_png, document_png,
        declared_name="Ravi Kumar Sharma", declared_id="647774509944",
        digilocker_token="tok", doc_uri="in.gov.uidai-ADHAR-1",
        digilocker=client, pipeline=pipeline,
    )

    client.verify_aadhaar.assert_called_once_with(
        "647774509944", "Ravi Kumar Sharma", access_token="tok", doc_uri="in.gov.uidai-ADHAR-1"
    )
    assert decision.failure_stage == "digilocker"


def test_run_pipeline_skips_digilocker_by_default(face_png, document_png, mocker):
    client = mocker.MagicMock(spec=DigiLockerClient)
    pipeline = make_pipeline({320: np.ones(128)})
    decision = run_pipeline(
        "enrollment", face_png, document_png,
        declared_name="Ravi Kumar Sharma", declared_id="647774509944",
        digilocker=client, pipeline=pipeline,
    )
    assert decision.verified
    client.verify_aadhaar.assert_not_called()


def _enrollment_files(tmp_path, face_png, document_png):
    face_path = tmp_path / "face.png"
    doc_path = tmp_path / "doc.png"
    face_path.write_bytes(face_png)
    doc_path.write_bytes(document_png)
    return str(face_path), str(doc_path)


def test_cli_enrollment_with_simulated_digilocker(tmp_path, monkeypatch, capsys, face_png, document_png):
    face_path, doc_path = _enrollment_files(tmp_path, face_png, document_png)
    pipeline = make_pipeline({320: np.ones(128)})
    monkeypatch.setattr(VerificationPipeline, "from_settings", classmethod(lambda cls: pipeline))
    monkeypatch.setattr(run_pipeline_module, "configure_logging", lambda: None)
    monkeypatch.setattr(
        run_pipeline_module, "DigiLockerClient",
        lambda: DigiLockerClient(client_id="", client_secret="", verify_checksum=False),
    )

    code = run_pipeline_module.main([
        "enrollment", "--face", face_path, "--document", doc_path,
        "--name", "Ravi Kumar Sharma", "--id", "6477 7450 9944", "--digilocker",
    ])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["verified"] is True


def test_cli_enrollment_passes_token_and_uri(tmp_path, monkeypatch, capsys, mocker, face_png, document_png):
    face_path, doc_path = _enrollment_files(tmp_path, face_png, document_png)
    pipeline = make_pipeline({320: np.ones(128)})
    client = mocker.MagicMock(spec=DigiLockerClient)
    client.verify_aadhaar.return_value = IdentityAuthority(name="Anita Desai", id_number="647774509944")
    monkeypatch.setattr(VerificationPipeline, "from_settings", classmethod(lambda cls: pipeline))
    monkeypatch.setattr(run_pipeline_module, "configure_logging", lambda: None)
    monkeypatch.setattr(run_pipeline_module, "DigiLockerClient", lambda: client)

    code = run_pipeline_module.main([
        "enrollment", "--face", face_path, "--document", doc_path,
        "--name", "Ravi Kumar Sharma", "--id", "647774509944",
        "--digilocker-token", "tok", "--doc-uri", "uri-1",
    ])

    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert payload["failure_stage"] == "digilocker"
    assert payload["details"]["authority_issues"] == ["AUTHORITY_NAME_MISMATCH"]
    assert client.verify_aadhaar.call_args.kwargs == {"access_token": "tok", "doc_uri": "uri-1"}


def test_cli_reports_digilocker_failure(tmp_path, monkeypatch, capsys, mocker, face_png, document_png):
    face_path, doc_path = _enrollment_files(tmp_path, face_png, document_png)
    client = mocker.MagicMock(spec=DigiLockerClient)
    client.verify_aadhaar.side_effect = DigiLockerError("DigiLocker request failed: 401")
    monkeypatch.setattr(VerificationPipeline, "from_settings", classmethod(lambda cls: make_pipeline({})))
    monkeypatch.setattr(run_pipeline_module, "configure_logging", lambda: None)
    monkeypatch.setattr(run_pipeline_module, "DigiLockerClient", lambda: client)

    code = run_pipeline_module.main([
        "enrollment", "--face", face_path, "--document", doc_path,
        "--name", "Ravi Kumar Sharma", "--id", "647774509944", "--digilocker-token", "tok",
    ])

    payload = json.loads(capsys.readouterr().out)
    assert code == 2
    assert payload == {"verified": False, "error": "DigiLocker request failed: 401"}
