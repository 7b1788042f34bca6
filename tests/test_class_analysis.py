#!/usr/bin/env python3
"""
Tests for class file parsing, probe placement and coverage calculation.

Run with: python -m pytest tests/test_class_analysis.py -v
Or directly: python tests/test_class_analysis.py
"""

import io
import shutil
import sys
import tempfile
import zipfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from jacoco_report.analysis.analyzer import Analyzer, CoverageBuilder, analyze_class_file
from jacoco_report.analysis.classfile import (
    KIND_EXIT,
    KIND_JUMP,
    KIND_SWITCH,
    decode_instructions,
    parse_class,
)
from jacoco_report.analysis.crc64 import class_id
from jacoco_report.analysis.model import (
    FULLY_COVERED,
    NOT_COVERED,
    PARTLY_COVERED,
    Counter,
)
from jacoco_report.data.store import ExecutionData, ExecutionDataStore
from jacoco_report.errors import AnalysisError, ClassFormatError

from tests.class_assembler import (
    ACC_ABSTRACT,
    ACC_INTERFACE,
    ACC_PUBLIC,
    ACC_STATIC,
    ACC_SYNTHETIC,
    ConstantPool,
    FieldDef,
    MethodDef,
    assemble_class,
    calc_class,
    call_class,
    guard_class,
    loop_class,
    pick_class,
    util_class,
)


def _analyze(data: bytes, probes=None, no_match=False):
    return analyze_class_file(parse_class(data), class_id(data), probes, no_match)


class TestClassId:
    """Tests for the CRC64 class id."""

    def test_empty_input(self):
        assert class_id(b'') == 0

    def test_single_byte(self):
        assert class_id(b'\x01') == 0x01B0000000000000

    def test_is_64_bit(self):
        value = class_id(calc_class())
        assert 0 <= value < 2 ** 64

    def test_depends_on_content(self):
        assert class_id(calc_class()) != class_id(util_class())
        assert class_id(calc_class()) == class_id(calc_class())

    def test_java9_hashed_as_java8(self):
        java8 = assemble_class("A", [], major_version=52)
        java9 = assemble_class("A", [], major_version=53)
        assert class_id(java9) == class_id(java8)

    def test_java11_not_normalized(self):
        java8 = assemble_class("A", [], major_version=52)
        java11 = assemble_class("A", [], major_version=55)
        assert class_id(java11) != class_id(java8)


class TestClassFile:
    """Tests for parsing class files and decoding bytecode."""

    def test_parse_names(self):
        class_file = parse_class(calc_class())
        assert class_file.name == "org/example/Calc"
        assert class_file.package_name == "org/example"
        assert class_file.super_name == "java/lang/Object"
        assert class_file.source_file == "Calc.java"

    def test_parse_method_code(self):
        method = parse_class(calc_class()).methods[0]
        assert method.name == "abs"
        assert method.descriptor == "(I)I"
        assert method.code.line_numbers == [(0, 3), (4, 4), (7, 5)]

    def test_default_package(self):
        assert parse_class(util_class("Util")).package_name == ""

    def test_bad_magic(self):
        try:
            parse_class(b'\x00\x01\x02\x03\x00\x00\x00\x34')
            assert False, "Expected ClassFormatError"
        except ClassFormatError:
            pass

    def test_truncated_class(self):
        try:
            parse_class(calc_class()[:40])
            assert False, "Expected ClassFormatError"
        except ClassFormatError:
            pass

    def test_decode_jumps(self):
        insns = decode_instructions(parse_class(loop_class()).methods[0].code.code)
        assert [i.offset for i in insns] == [0, 1, 2, 3, 4, 7, 10, 13, 14]
        assert insns[4].kind == KIND_JUMP and insns[4].target == 13
        assert insns[6].kind == KIND_JUMP and insns[6].target == 2
        assert insns[8].kind == KIND_EXIT

    def test_decode_tableswitch(self):
        # 0: iload_0  1: tableswitch (pad 2) default=+23 low=0 high=1 [+23, +24]  24: return  25: return
        code = bytes([0x1A, 0xAA, 0x00, 0x00]) + bytes.fromhex(
            "00000017" "00000000" "00000001" "00000017" "00000018"
        ) + bytes([0xB1, 0xB1])
        insns = decode_instructions(code)
        switch = insns[1]
        assert switch.kind == KIND_SWITCH
        assert switch.target == 24
        assert switch.switch_targets == [24, 25]
        assert [i.offset for i in insns] == [0, 1, 24, 25]

    def test_invalid_opcode(self):
        try:
            decode_instructions(bytes([0xFE]))
            assert False, "Expected ClassFormatError"
        except ClassFormatError:
            pass


class TestMethodCoverage:
    """Tests for probe placement and counters of single classes."""

    def test_fully_covered(self):
        coverage = _analyze(calc_class(), [True, True])
        assert coverage.instruction_counter == Counter(0, 7)
        assert coverage.branch_counter == Counter(0, 2)
        assert coverage.line_counter == Counter(0, 3)
        assert coverage.complexity_counter == Counter(0, 2)
        assert coverage.method_counter == Counter(0, 1)
        assert coverage.class_counter == Counter(0, 1)

    def test_partly_covered(self):
        # Only the "return -x" exit was reached
        coverage = _analyze(calc_class(), [True, False])
        assert coverage.instruction_counter == Counter(2, 5)
        assert coverage.branch_counter == Counter(1, 1)
        assert coverage.line_counter == Counter(1, 2)
        assert coverage.complexity_counter == Counter(1, 1)
        assert coverage.get_line(3).status == PARTLY_COVERED
        assert coverage.get_line(4).status == FULLY_COVERED
        assert coverage.get_line(5).status == NOT_COVERED

    def test_not_executed(self):
        coverage = _analyze(calc_class(), None)
        assert coverage.instruction_counter == Counter(7, 0)
        assert coverage.branch_counter == Counter(2, 0)
        assert coverage.line_counter == Counter(3, 0)
        assert coverage.method_counter == Counter(1, 0)
        assert coverage.class_counter == Counter(1, 0)

    def test_loop_head_probe(self):
        # count(0): enters the loop head, skips the body, returns
        coverage = _analyze(loop_class(), [True, False, True])
        method = coverage.methods[0]
        assert method.instruction_counter == Counter(2, 7)
        assert method.branch_counter == Counter(1, 1)
        assert method.get_line(20).status == FULLY_COVERED
        assert method.get_line(21).status == PARTLY_COVERED
        assert method.get_line(22).status == NOT_COVERED
        assert method.get_line(23).status == FULLY_COVERED

    def test_loop_body_executed(self):
        coverage = _analyze(loop_class(), [True, True, True])
        assert coverage.instruction_counter == Counter(0, 9)
        assert coverage.branch_counter == Counter(0, 2)

    def test_method_invocation_line_probe(self):
        # helper() threw: only the probe in front of its line was hit
        coverage = _analyze(call_class(), [True, False, False])
        run = next(m for m in coverage.methods if m.name == "run")
        assert run.get_line(7).status == FULLY_COVERED
        assert run.get_line(8).status == NOT_COVERED
        assert run.get_line(9).status == NOT_COVERED
        assert run.instruction_counter == Counter(2, 2)

    def test_probe_ids_continue_across_methods(self):
        coverage = _analyze(call_class(), [False, False, True])
        helper = next(m for m in coverage.methods if m.name == "helper")
        run = next(m for m in coverage.methods if m.name == "run")
        assert helper.instruction_counter == Counter(0, 1)
        assert run.instruction_counter == Counter(4, 0)
        assert coverage.method_counter == Counter(1, 1)

    def test_synthetic_method_filtered_but_consumes_probe(self):
        data = assemble_class("A", [
            MethodDef("access$000", "()V", bytes([0xB1]), access=ACC_STATIC | ACC_SYNTHETIC),
            MethodDef("run", "()V", bytes([0xB1])),
        ])
        coverage = _analyze(data, [False, True])
        assert [m.name for m in coverage.methods] == ["run"]
        assert coverage.instruction_counter == Counter(0, 1)

    def test_lambda_is_not_filtered(self):
        data = assemble_class("A", [
            MethodDef("lambda$run$0", "()V", bytes([0xB1]), access=ACC_STATIC | ACC_SYNTHETIC),
        ])
        assert [m.name for m in _analyze(data).methods] == ["lambda$run$0"]

    def test_private_empty_constructor_filtered(self):
        pool = ConstantPool()
        init = pool.method_ref("java/lang/Object", "<init>", "()V")
        code = bytes([0x2A, 0xB7, init >> 8, init & 0xFF, 0xB1])
        data = assemble_class("Util", [
            MethodDef("<init>", "()V", code, access=0x0002),
            MethodDef("run", "()V", bytes([0xB1])),
        ], pool=pool)
        assert [m.name for m in _analyze(data).methods] == ["run"]

    def test_no_line_numbers(self):
        data = assemble_class("A", [MethodDef("run", "()V", bytes([0x00, 0xB1]))])
        coverage = _analyze(data, [True])
        assert coverage.instruction_counter == Counter(0, 2)
        assert coverage.line_counter == Counter(0, 0)

    def test_instrumented_class_rejected(self):
        data = assemble_class(
            "A", [MethodDef("run", "()V", bytes([0xB1]))],
            fields=[FieldDef("$jacocoData", "[Z")],
        )
        try:
            _analyze(data)
            assert False, "Expected AnalysisError"
        except AnalysisError as e:
            assert "instrumented" in str(e)

    def test_try_block_start_gets_probe(self):
        # helper() returned normally: the handler never ran
        coverage = _analyze(guard_class(), [True, True, False, True])
        run = next(m for m in coverage.methods if m.name == "run")
        assert run.instruction_counter == Counter(2, 4)
        assert run.get_line(29).status == FULLY_COVERED
        assert run.get_line(30).status == FULLY_COVERED
        assert run.get_line(31).status == FULLY_COVERED
        assert run.get_line(32).status == NOT_COVERED

    def test_handler_covered_only_through_its_probe(self):
        # helper() threw, the handler returned
        coverage = _analyze(guard_class(), [True, False, True, False])
        run = next(m for m in coverage.methods if m.name == "run")
        assert run.instruction_counter == Counter(2, 4)
        assert run.get_line(29).status == FULLY_COVERED
        assert run.get_line(30).status == NOT_COVERED
        assert run.get_line(31).status == NOT_COVERED
        assert run.get_line(32).status == FULLY_COVERED
        helper = next(m for m in coverage.methods if m.name == "helper")
        assert helper.instruction_counter == Counter(1, 0)

    def test_switch_probe_on_shared_default_target(self):
        # Only probe 0 fired: the switch went to its default, then nothing returned
        coverage = _analyze(pick_class(), [True, False, False])
        method = coverage.methods[0]
        assert method.instruction_counter == Counter(5, 2)
        assert method.branch_counter == Counter(1, 1)
        assert method.get_line(40).status == PARTLY_COVERED
        assert method.get_line(41).status == NOT_COVERED
        assert method.get_line(43).status == NOT_COVERED

    def test_switch_case_reaches_shared_target_through_goto(self):
        # case 0: through the goto probe into the shared return
        coverage = _analyze(pick_class(), [False, True, True])
        method = coverage.methods[0]
        assert method.instruction_counter == Counter(0, 7)
        assert method.branch_counter == Counter(1, 1)
        assert method.complexity_counter == Counter(1, 1)
        assert method.get_line(41).status == FULLY_COVERED

    def test_switch_all_targets_taken(self):
        coverage = _analyze(pick_class(), [True, True, True])
        method = coverage.methods[0]
        assert method.branch_counter == Counter(0, 2)
        assert method.complexity_counter == Counter(0, 2)
        assert method.get_line(40).status == FULLY_COVERED

    def test_subroutines_rejected(self):
        # jsr +3, return, astore_1, ret 1
        code = bytes([0xA8, 0x00, 0x04, 0xB1, 0x4C, 0xA9, 0x01])
        data = assemble_class("A", [MethodDef("run", "()V", code)])
        try:
            _analyze(data)
            assert False, "Expected AnalysisError"
        except AnalysisError:
            pass


class TestAnalyzer:
    """Tests for walking class directories and archives."""

    def setup_method(self):
        self.tmp = Path(tempfile.mkdtemp(prefix="analyzer_test_"))
        self.store = ExecutionDataStore()
        self.builder = CoverageBuilder()
        self.analyzer = Analyzer(self.store, self.builder.visit_coverage)

    def teardown_method(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _write(self, relative: str, data: bytes) -> Path:
        path = self.tmp / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def test_directory_with_executed_and_unexecuted_classes(self):
        calc = calc_class()
        self._write("bin/org/example/Calc.class", calc)
        self._write("bin/org/example/Util.class", util_class())
        self._write("bin/readme.txt", b"not a class")
        self.store.put(ExecutionData(class_id(calc), "org/example/Calc", [True, True]))

        assert self.analyzer.analyze_all(self.tmp / "bin") == 2

        bundle = self.builder.get_bundle("project")
        assert bundle.name == "project"
        assert [p.name for p in bundle.packages] == ["org/example"]
        classes = {c.name: c for c in bundle.classes}
        # Never executed, still reported with zero coverage
        assert classes["org/example/Util"].instruction_counter == Counter(4, 0)
        assert classes["org/example/Calc"].instruction_counter == Counter(0, 7)
        assert bundle.instruction_counter == Counter(4, 7)
        assert bundle.class_counter == Counter(1, 1)

    def test_source_files_aggregate_classes(self):
        self._write("bin/Calc.class", calc_class("org/example/Calc"))
        self._write("bin/Inner.class", calc_class("org/example/Calc$Inner"))
        self.analyzer.analyze_all(self.tmp / "bin")

        package = self.builder.get_bundle("p").packages[0]
        assert [s.name for s in package.source_files] == ["Calc.java"]
        source = package.source_files[0]
        # Both classes report the same lines, each line counted once
        assert source.line_counter == Counter(3, 0)
        assert source.instruction_counter == Counter(14, 0)
        assert package.instruction_counter == Counter(14, 0)

    def test_jar_archive(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w') as jar:
            jar.writestr("META-INF/MANIFEST.MF", "Manifest-Version: 1.0\n")
            jar.writestr("org/example/Calc.class", calc_class())
        self._write("lib/app.jar", buffer.getvalue())
        assert self.analyzer.analyze_all(self.tmp / "lib") == 1
        assert [c.name for c in self.builder.classes] == ["org/example/Calc"]

    def test_missing_directory(self):
        try:
            self.analyzer.analyze_all(self.tmp / "does-not-exist")
            assert False, "Expected AnalysisError"
        except AnalysisError as e:
            assert isinstance(e, OSError)

    def test_no_match_class(self):
        self.store.put(ExecutionData(42, "org/example/Calc", [True, True]))
        self.analyzer.analyze_class(calc_class(), "Calc.class")
        coverage = self.builder.classes[0]
        assert coverage.no_match
        assert coverage.instruction_counter.covered == 0
        assert self.builder.no_match_classes == [coverage]

    def test_synthetic_class_skipped(self):
        data = assemble_class("A", [MethodDef("run", "()V", bytes([0xB1]))],
                              access=ACC_PUBLIC | ACC_SYNTHETIC)
        self.analyzer.analyze_class(data, "A.class")
        assert self.builder.classes == []

    def test_class_without_code_dropped(self):
        data = assemble_class("I", [MethodDef("run", "()V", None, access=ACC_PUBLIC | ACC_ABSTRACT)],
                              access=ACC_PUBLIC | ACC_INTERFACE | ACC_ABSTRACT)
        self.analyzer.analyze_class(data, "I.class")
        assert self.builder.classes == []

    def test_duplicate_class_with_other_id(self):
        self.analyzer.analyze_class(calc_class(), "a/Calc.class")
        # Same id again is fine
        self.analyzer.analyze_class(calc_class(), "b/Calc.class")
        try:
            self.analyzer.analyze_class(calc_class(source_file="Other.java"), "c/Calc.class")
            assert False, "Expected AnalysisError"
        except AnalysisError as e:
            assert "same name" in str(e)

    def test_corrupt_class_reports_location(self):
        self._write("bin/Broken.class", calc_class()[:30])
        try:
            self.analyzer.analyze_all(self.tmp / "bin")
            assert False, "Expected AnalysisError"
        except AnalysisError as e:
            assert "Broken.class" in str(e)


def run_tests():
    """Run all tests and report results."""
    test_classes = [TestClassId, TestClassFile, TestMethodCoverage, TestAnalyzer]

    total_tests = 0
    passed_tests = 0
    failed_tests = []

    for test_class in test_classes:
        print(f"\n{'='*60}")
        print(f"Running {test_class.__name__}")
        print('='*60)

        instance = test_class()
        test_methods = [m for m in dir(instance) if m.startswith('test_')]

        for method_name in test_methods:
            total_tests += 1
            if hasattr(instance, 'setup_method'):
                instance.setup_method()
            method = getattr(instance, method_name)

            try:
                method()
                print(f"  ✓ {method_name}")
                passed_tests += 1
            except AssertionError as e:
                print(f"  ✗ {method_name}")
                print(f"    AssertionError: {e}")
                failed_tests.append((test_class.__name__, method_name, str(e)))
            except Exception as e:
                print(f"  ✗ {method_name}")
                print(f"    {type(e).__name__}: {e}")
                failed_tests.append((test_class.__name__, method_name, str(e)))
            finally:
                if hasattr(instance, 'teardown_method'):
                    instance.teardown_method()

    print(f"\n{'='*60}")
    print(f"RESULTS: {passed_tests}/{total_tests} tests passed")
    print('='*60)

    if failed_tests:
        print("\nFailed tests:")
        for class_name, method_name, error in failed_tests:
            print(f"  - {class_name}.{method_name}: {error}")
        return 1
    else:
        print("\nAll tests passed!")
        return 0


if __name__ == "__main__":
    sys.exit(run_tests())
