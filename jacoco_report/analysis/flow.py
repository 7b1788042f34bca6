"""
Control flow facts about the labels of a method.

A label is a bytecode offset something refers to: a jump or switch
target, the start, end or handler of a try block, or the start of a line.
Knowing which labels are reached from more than one place decides where
the agent put its probes, and therefore how a recorded probe array maps
back onto instructions.
"""

from typing import Optional

from .classfile import (
    CodeAttribute,
    Insn,
    KIND_EXIT,
    KIND_INVOKE,
    KIND_JUMP,
    KIND_SUBROUTINE,
    KIND_SWITCH,
    GOTO,
)
from ..errors import AnalysisError


class LabelInfo:
    """Flow flags of one label."""

    def __init__(self, offset: int):
        self.offset = offset
        # Reached by a jump, switch, exception or as method entry
        self.target = False
        # Reached by falling through from the previous instruction
        self.successor = False
        self.multi_target = False
        # Starts a line that invokes a method
        self.method_invocation_line = False
        # First analyzed instruction at this label
        self.instruction = None

    def set_target(self) -> None:
        if self.target or self.successor:
            self.multi_target = True
        else:
            self.target = True

    def set_successor(self) -> None:
        self.successor = True
        if self.target:
            self.multi_target = True

    @property
    def needs_probe(self) -> bool:
        """A probe goes in front of this label when it is entered sequentially."""
        return self.successor and (self.multi_target or self.method_invocation_line)

    def __repr__(self) -> str:
        flags = [name for name in ("target", "successor", "multi_target", "method_invocation_line")
                 if getattr(self, name)]
        return f"LabelInfo({self.offset}, {'|'.join(flags)})"


def unique_targets(insn: Insn) -> list[int]:
    """Default target first, then each case target the first time it appears."""
    targets = [insn.target]
    for t in insn.switch_targets:
        if t not in targets:
            targets.append(t)
    return targets


def line_starts(code: CodeAttribute) -> dict[int, int]:
    """Line number per start offset; later table entries win."""
    lines = {}
    for start_pc, line in code.line_numbers:
        lines[start_pc] = line
    return lines


def create_labels(code: CodeAttribute, insns: list[Insn]) -> dict[int, LabelInfo]:
    offsets = set(line_starts(code))
    for handler in code.exception_table:
        offsets.update((handler.start_pc, handler.end_pc, handler.handler_pc))
    for insn in insns:
        if insn.target is not None:
            offsets.add(insn.target)
        offsets.update(insn.switch_targets)
    return {offset: LabelInfo(offset) for offset in sorted(offsets)}


def mark_labels(code: CodeAttribute, insns: list[Insn]) -> dict[int, LabelInfo]:
    """
    Create the labels of a method and compute their flow flags.

    Raises:
        AnalysisError: for jsr/ret subroutines, which are not supported
    """
    labels = create_labels(code, insns)
    lines = line_starts(code)

    for handler in reversed(code.exception_table):
        # Enforce a probe at the start of the try block
        labels[handler.start_pc].set_target()
        # The handler can be entered from anywhere in the block
        labels[handler.handler_pc].set_target()

    successor = False
    first = True
    line_start: Optional[LabelInfo] = None

    for insn in insns:
        label = labels.get(insn.offset)
        if label is not None:
            if first:
                label.set_target()
            if successor:
                label.set_successor()
            if insn.offset in lines:
                line_start = label

        if insn.kind == KIND_JUMP:
            labels[insn.target].set_target()
            successor = insn.opcode != GOTO
        elif insn.kind == KIND_SWITCH:
            for target in unique_targets(insn):
                labels[target].set_target()
            successor = False
        elif insn.kind == KIND_EXIT:
            successor = False
        elif insn.kind == KIND_SUBROUTINE:
            raise AnalysisError("Subroutines (jsr/ret) are not supported.")
        else:
            successor = True
            if insn.kind == KIND_INVOKE and line_start is not None:
                line_start.method_invocation_line = True
        first = False

    return labels
