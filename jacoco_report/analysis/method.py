"""
Probe placement and instruction analysis for a single method.

Walks the bytecode in the same order the agent instruments it, so probe
ids are handed out identically:
    - one probe for every return and athrow
    - one probe on every jump to a label with more than one entry
    - one probe in front of a label that is entered sequentially and is
      either a multi-target or starts a line with a method invocation
    - one probe per multi-target switch target
"""

from typing import Callable, Optional

from .classfile import (
    GOTO,
    KIND_EXIT,
    KIND_JUMP,
    KIND_SWITCH,
    Insn,
    MethodInfo,
)
from .flow import LabelInfo, line_starts, mark_labels, unique_targets
from .instructions import Instruction, InstructionsBuilder


class MethodAnalyzer:
    """
    Computes instruction coverage of a method from a class probe array.

    Args:
        probes: probe array recorded for the class, None if not executed
        next_probe_id: shared per class, returns the next probe id
    """

    def __init__(self, probes: Optional[list[bool]], next_probe_id: Callable[[], int]):
        self.probes = probes
        self.next_probe_id = next_probe_id

    def analyze(self, method: MethodInfo) -> tuple[list[Insn], list[Instruction]]:
        """Return the decoded bytecode and the covered instruction graph."""
        if method.code is None:
            return [], []
        insns = method.code.instructions()
        labels = mark_labels(method.code, insns)
        lines = line_starts(method.code)
        builder = InstructionsBuilder(self.probes)

        for insn in insns:
            label = labels.get(insn.offset)
            if label is not None:
                if label.needs_probe:
                    builder.add_probe(self.next_probe_id(), 0)
                    builder.no_successor()
                builder.add_label(label)
            if insn.offset in lines:
                builder.set_current_line(lines[insn.offset])

            if insn.kind == KIND_EXIT:
                builder.add_instruction()
                builder.add_probe(self.next_probe_id(), 0)
            elif insn.kind == KIND_JUMP:
                self._visit_jump(builder, insn, labels[insn.target])
            elif insn.kind == KIND_SWITCH:
                self._visit_switch(builder, insn, labels)
            else:
                builder.add_instruction()

        return insns, builder.get_instructions()

    def _visit_jump(self, builder: InstructionsBuilder, insn: Insn, target: LabelInfo) -> None:
        builder.add_instruction()
        if target.multi_target:
            builder.add_probe(self.next_probe_id(), 1)
        else:
            builder.add_jump(target, 1)
        if insn.opcode == GOTO:
            builder.no_successor()

    def _visit_switch(self, builder: InstructionsBuilder, insn: Insn, labels: dict[int, LabelInfo]) -> None:
        targets = unique_targets(insn)
        probe_ids = {}
        for target in targets:
            if labels[target].multi_target:
                probe_ids[target] = self.next_probe_id()

        builder.add_instruction()
        for branch, target in enumerate(targets):
            if target in probe_ids:
                builder.add_probe(probe_ids[target], branch)
            else:
                builder.add_jump(labels[target], branch)
        builder.no_successor()
