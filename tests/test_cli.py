import json
import subprocess
import sys
from pathlib import Path

from PIL import Image

from conftest import LOINC, PATIENT_UUID

ROOT = Path(__file__).resolve().parents[1]

DICTIONARY = {
    "persons": [{"uuid": PATIENT_UUID, "given_name": "Jane", "family_name": "Doe"}],
    "concepts": [
        {
            "uuid": "weight",
            "name": "Weight",
            "datatype": "NM",
            "units": "kg",
            "mappings": [{"system": LOINC, "code": "29463-7"}],
        }
    ],
}


def _run(*args):
    cmd = [sys.executable, "cli.py", *args]
    return subprocess.run(cmd, capture_output=True, text=True, cwd=ROOT)


def _write_json(path, data):
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh)
    return str(path)


def _observation(subject_uuid):
    return {
        "resourceType": "Observation",
        "id": "obs-cli",
        "subject": {"reference": f"Patient/{subject_uuid}"},
        "effectiveDateTime": "2024-03-01T09:45:00",
        "code": {"coding": [{"system": LOINC, "code": "29463-7"}]},
        "valueQuantity": {"value": 72.5},
    }


def test_import_observation(tmp_path):
    dictionary = _write_json(tmp_path / "dictionary.json", DICTIONARY)
    resource = _write_json(tmp_path / "obs.json", _observation(PATIENT_UUID))
    result = _run("import-observation", resource, "--dictionary", dictionary)
    assert result.returncode == 0, result.stderr
    output = json.loads(result.stdout)
    assert output["errors"] == []
    assert output["observation"]["person"] == PATIENT_UUID
    assert output["observation"]["value"] == "72.5"
    assert output["decimal_updates"] == ["weight"]


def test_import_observation_strict_fails_on_errors(tmp_path):
    dictionary = _write_json(tmp_path / "dictionary.json", DICTIONARY)
    resource = _write_json(tmp_path / "obs.json", _observation("unknown-patient"))
    out_file = tmp_path / "result.json"
    result = _run("import-observation", resource, "--dictionary", dictionary,
                  "--strict", "-o", str(out_file))
    assert result.returncode == 1
    output = json.loads(out_file.read_text(encoding="utf-8"))
    assert output["errors"] == ["There is no person for the given uuid unknown-patient"]


def test_invalid_dictionary_exits_with_usage_error(tmp_path):
    dictionary = _write_json(tmp_path / "dictionary.json", {"concepts": [{"uuid": "x", "datatype": "??"}]})
    resource = _write_json(tmp_path / "obs.json", _observation(PATIENT_UUID))
    result = _run("import-observation", resource, "--dictionary", dictionary)
    assert result.returncode == 2
    assert "Invalid dictionary" in result.stderr


def test_encode_image(tmp_path):
    image_path = tmp_path / "scan.png"
    Image.new("L", (2, 1), 130).save(image_path)
    result = _run("encode-image", str(image_path), "--uuid", "obs-7")
    assert result.returncode == 0, result.stderr
    attachment = json.loads(result.stdout)
    assert attachment["size"] == 10002
    assert attachment["url"].endswith("obs-7")
    assert attachment["data"] == "AgI="


def test_encode_colour_image_fails(tmp_path):
    image_path = tmp_path / "photo.png"
    Image.new("RGB", (1, 1), (255, 0, 0)).save(image_path)
    result = _run("encode-image", str(image_path), "--uuid", "obs-7")
    assert result.returncode == 1
    assert "Grayscale images only are supported" in result.stderr


def test_decode_image(tmp_path):
    payload = tmp_path / "payload.txt"
    payload.write_text("2 2 10 20 30 40", encoding="utf-8")
    output = tmp_path / "out.png"
    result = _run("decode-image", str(payload), "-o", str(output))
    assert result.returncode == 0, result.stderr
    with Image.open(output) as img:
        assert img.size == (2, 2)
        assert list(img.getdata()) == [10, 20, 30, 40]


def test_decode_invalid_payload(tmp_path):
    payload = tmp_path / "payload.txt"
    payload.write_text("2 2 10 20 30", encoding="utf-8")
    result = _run("decode-image", str(payload), "-o", str(tmp_path / "out.png"))
    assert result.returncode == 1
    assert "Invalid image data sent" in result.stderr
