import tempfile
import unittest
from pathlib import Path

import yaml

from apicurio_sync.errors import ConfigError, DuplicateArtifactError
from apicurio_sync.manifest import (
    DEFAULT_GROUP,
    ArtifactRef,
    load_manifest,
    parse_manifest,
    write_empty_manifest,
)


class TestManifestParsing(unittest.TestCase):
    def test_loads_push_and_pull_entries(self) -> None:
        yaml_text = """
push:
  - group: com.example
    artifact: orders
    path: schemas/orders.avsc
    type: avro
    name: Orders
    description: Order events
    labels: [orders, events]
    properties:
      owner: team-a
      retries: 3
pull:
  - artifact: payments
    path: vendor/payments.yaml
    version: 2
  - group: com.example
    artifact: users
    path: vendor/users.json
"""
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.yaml"
            path.write_text(yaml_text, encoding="utf-8")
            manifest = load_manifest(path)

        self.assertEqual(len(manifest.push), 1)
        push = manifest.push[0]
        self.assertEqual(push.ref, ArtifactRef("com.example", "orders"))
        self.assertEqual(push.path, Path("schemas/orders.avsc"))
        self.assertEqual(push.artifact_type, "AVRO")
        self.assertEqual(push.labels, ("orders", "events"))
        self.assertEqual(push.properties, {"owner": "team-a", "retries": "3"})

        payments, users = manifest.pull
        self.assertEqual(payments.ref, ArtifactRef(DEFAULT_GROUP, "payments"))
        self.assertEqual(payments.version, "2")
        self.assertIsNone(users.version)

    def test_same_artifact_may_be_pushed_and_pulled(self) -> None:
        manifest = parse_manifest(
            {
                "push": [{"group": "g", "artifact": "a", "path": "a.json"}],
                "pull": [{"group": "g", "artifact": "a", "path": "copy/a.json"}],
            }
        )
        self.assertEqual(manifest.push[0].ref, manifest.pull[0].ref)

    def test_duplicates_within_a_direction_are_rejected(self) -> None:
        with self.assertRaises(DuplicateArtifactError):
            parse_manifest(
                {
                    "pull": [
                        {"group": "g", "artifact": "a", "path": "one.json"},
                        {"group": "g", "artifact": "a", "path": "two.json"},
                    ]
                }
            )
        # An empty group and the default group are the same artifact.
        with self.assertRaises(DuplicateArtifactError):
            parse_manifest(
                {
                    "push": [
                        {"artifact": "a", "path": "one.json"},
                        {"group": "default", "artifact": "a", "path": "two.json"},
                    ]
                }
            )

    def test_malformed_entries_are_config_errors(self) -> None:
        bad = [
            ["not", "a", "mapping"],
            {"push": {"artifact": "a"}},
            {"push": [{"artifact": "a"}]},
            {"pull": [{"path": "a.json"}]},
            {"push": [{"artifact": "a", "path": "a.json", "type": "COBOL"}]},
            {"push": [{"artifact": "a", "path": "a.json", "labels": "x"}]},
            {"push": [{"artifact": "a", "path": "a.json", "properties": ["x"]}]},
            {"pull": [{"group": "g", "artifact": "a", "path": "a.json", "version": 1.10}]},
        ]
        for raw in bad:
            with self.subTest(raw=raw):
                with self.assertRaises(ConfigError):
                    parse_manifest(raw)

    def test_float_version_asks_for_quoting(self) -> None:
        raw = yaml.safe_load("pull:\n  - {artifact: a, path: a.json, version: 1.10}\n")
        with self.assertRaises(ConfigError) as cm:
            parse_manifest(raw)
        self.assertIn("Quote it", str(cm.exception))

        manifest = parse_manifest({"pull": [{"artifact": "a", "path": "a.json", "version": "1.10"}]})
        self.assertEqual(manifest.pull[0].version, "1.10")
        manifest = parse_manifest({"pull": [{"artifact": "a", "path": "a.json", "version": 3}]})
        self.assertEqual(manifest.pull[0].version, "3")

    def test_empty_document_is_an_empty_manifest(self) -> None:
        manifest = parse_manifest(None)
        self.assertEqual(manifest.push, ())
        self.assertEqual(manifest.pull, ())

    def test_missing_file_and_bad_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.yaml"
            with self.assertRaises(ConfigError):
                load_manifest(path)
            path.write_text("push: [unclosed", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_manifest(path)

    def test_write_empty_manifest_refuses_to_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.yaml"
            write_empty_manifest(path)
            manifest = load_manifest(path)
            with self.assertRaises(ConfigError):
                write_empty_manifest(path)
        self.assertEqual(manifest.push, ())


if __name__ == "__main__":
    unittest.main()
