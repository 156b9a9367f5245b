#!/usr/bin/env python3
"""Standalone smoke runner that writes results to a file."""
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

results = []

def log(msg):
    results.append(msg)

def run_all():
    # --- Test 1: model ---
    try:
        from cpanmeta_generator.models.meta import Dependency, Distribution, Phase
        dist = Distribution(release="ADAMK/Foo-1.0.tar.gz", name="Foo")
        assert dist.to_row() == ("ADAMK/Foo-1.0.tar.gz", "Foo", None, None, None, None, None)
        dep = Dependency(release=dist.release, phase=Phase.BUILD, module="Test::More")
        assert dep.to_row() == ("ADAMK/Foo-1.0.tar.gz", "build", "Test::More", "0")
        log("PASS: meta model")
    except Exception as e:
        log(f"FAIL: meta model: {e}")
        return

    # --- Test 2: requirement decoding ---
    try:
        from cpanmeta_generator.parsers.meta_yml import Single, decode_requirements, expand_requirements
        assert decode_requirements("Foo::Bar") == Single("Foo::Bar")
        pairs = expand_requirements(decode_requirements({"Zeta": "0", "Alpha": "1", "Mu": "~"}))
        assert pairs == [("Alpha", "1"), ("Mu", "0"), ("Zeta", "0")]
        log("PASS: requirement decoding")
    except Exception as e:
        log(f"FAIL: requirement decoding: {e}")

    # --- Test 3: extraction ---
    try:
        import tempfile
        from pathlib import Path
        from cpanmeta_generator.parsers.meta_yml import extract

        with tempfile.TemporaryDirectory() as tmpdir:
            Path(tmpdir, "META.yml").write_text(
                "name: Foo\nversion: 1.10\nrequires: Carp\nbuild_requires:\n  Test::More: 0.88\n"
            )
            record = extract(Path(tmpdir), "ADAMK/Foo-1.10.tar.gz")
            assert record.distribution.version == "1.10"
            assert [d.phase.value for d in record.dependencies] == ["runtime", "build"]

            Path(tmpdir, "META.yml").write_text("name: [broken\n")
            record = extract(Path(tmpdir), "ADAMK/Foo-1.10.tar.gz")
            assert record.parsed is False and record.dependencies == ()
        log("PASS: META.yml extraction")
    except Exception as e:
        log(f"FAIL: META.yml extraction: {e}")

    # --- Test 4: batched writer ---
    try:
        import tempfile
        from pathlib import Path
        from cpanmeta_generator.core.schema import connect, ensure_schema
        from cpanmeta_generator.core.writer import BatchedWriter
        from cpanmeta_generator.models.meta import Distribution, MetaRecord

        with tempfile.TemporaryDirectory() as tmpdir:
            conn = connect(Path(tmpdir) / "meta.sqlite")
            ensure_schema(conn)
            ensure_schema(conn)
            writer = BatchedWriter(conn)
            writer.begin()
            for i in range(250):
                writer.write(MetaRecord(Distribution(release=f"A/D-{i}.tar.gz")))
            writer.finish()
            assert writer.commits == 3
            assert conn.execute("SELECT COUNT(*) FROM meta_distribution").fetchone()[0] == 250
            conn.close()
        log("PASS: batched writer")
    except Exception as e:
        log(f"FAIL: batched writer: {e}")

    # --- Test 5: reconciliation ---
    try:
        import tempfile
        from pathlib import Path
        from cpanmeta_generator.core.reconciler import archive_path, reconcile
        from cpanmeta_generator.core.schema import connect, ensure_schema

        with tempfile.TemporaryDirectory() as tmpdir:
            minicpan = Path(tmpdir) / "minicpan"
            conn = connect(Path(tmpdir) / "meta.sqlite")
            ensure_schema(conn)
            for release in ("ALICE/A.tar.gz", "BOB/B.tar.gz"):
                conn.execute("INSERT INTO meta_distribution (release) VALUES (?)", (release,))
                conn.execute("INSERT INTO meta_dependency VALUES (?, 'runtime', 'Carp', '0')", (release,))
            path = archive_path(minicpan, "ALICE/A.tar.gz")
            path.parent.mkdir(parents=True)
            path.write_bytes(b"")
            assert reconcile(conn, minicpan) == frozenset({"ALICE/A.tar.gz"})
            assert conn.execute("SELECT COUNT(*) FROM meta_dependency").fetchone()[0] == 1
            conn.close()
        log("PASS: delta reconciliation")
    except Exception as e:
        log(f"FAIL: delta reconciliation: {e}")

    # --- Test 6: lazy __init__ import ---
    try:
        import cpanmeta_generator
        assert cpanmeta_generator.__version__ == "1.0.0"
        assert cpanmeta_generator.Generator.__name__ == "Generator"
        log("PASS: cpanmeta_generator.__version__")
    except Exception as e:
        log(f"FAIL: cpanmeta_generator.__version__: {e}")


if __name__ == "__main__":
    run_all()
    output = "\n".join(results)

    outpath = os.path.join(os.path.dirname(__file__), "test_results.txt")
    total = len(results)
    passed = sum(1 for r in results if r.startswith("PASS"))
    failed = total - passed
    with open(outpath, "w") as f:
        f.write(output + "\n")
        f.write(f"\n=== {passed}/{total} passed, {failed} failed ===\n")

    # Also print to stdout
    print(output)
    print(f"\n=== {passed}/{total} passed, {failed} failed ===")

    sys.exit(0 if failed == 0 else 1)
