"""
Instruction level coverage.

Only a few instructions carry a probe. Coverage of all other instructions
is derived: an executed probe marks its instruction covered and the
coverage flows backwards through the chain of predecessors until it
reaches an instruction that is already known to be covered.
"""

from typing import Optional

from .flow import LabelInfo
from .model import COUNTER_0_0, COUNTER_0_1, COUNTER_1_0, Counter, UNKNOWN_LINE


class Instruction:
    """Coverage state of a single bytecode instruction."""

    def __init__(self, line: int):
        self.line = line
        self.branches = 0
        self.covered_branches: set[int] = set()
        self.predecessor: Optional["Instruction"] = None
        self.predecessor_branch = 0

    def add_branch_to(self, target: "Instruction", branch: int) -> None:
        """Add a branch that continues with target."""
        self.branches += 1
        target.predecessor = self
        target.predecessor_branch = branch
        if target.covered_branches:
            _propagate_executed_branch(self, branch)

    def add_probe_branch(self, executed: bool, branch: int) -> None:
        """Add a branch that ends in a probe."""
        self.branches += 1
        if executed:
            _propagate_executed_branch(self, branch)

    @property
    def instruction_counter(self) -> Counter:
        return COUNTER_0_1 if self.covered_branches else COUNTER_1_0

    @property
    def branch_counter(self) -> Counter:
        if self.branches < 2:
            return COUNTER_0_0
        covered = len(self.covered_branches)
        return Counter(self.branches - covered, covered)


def _propagate_executed_branch(insn: Optional[Instruction], branch: int) -> None:
    # Iterative on purpose: predecessor chains can be very long
    while insn is not None:
        if insn.covered_branches:
            insn.covered_branches.add(branch)
            break
        insn.covered_branches.add(branch)
        branch = insn.predecessor_branch
        insn = insn.predecessor


class InstructionsBuilder:
    """Builds the instruction graph of one method while it is visited in order."""

    def __init__(self, probes: Optional[list[bool]]):
        self.probes = probes
        self.current_line = UNKNOWN_LINE
        self.current_insn: Optional[Instruction] = None
        self.current_labels: list[LabelInfo] = []
        self.instructions: list[Instruction] = []
        self._jumps: list[tuple[Instruction, LabelInfo, int]] = []

    def set_current_line(self, line: int) -> None:
        self.current_line = line

    def add_label(self, label: LabelInfo) -> None:
        self.current_labels.append(label)
        if not label.successor:
            self.no_successor()

    def add_instruction(self) -> Instruction:
        insn = Instruction(self.current_line)
        for label in self.current_labels:
            label.instruction = insn
        self.current_labels.clear()
        if self.current_insn is not None:
            self.current_insn.add_branch_to(insn, 0)
        self.current_insn = insn
        self.instructions.append(insn)
        return insn

    def no_successor(self) -> None:
        """The next instruction is not reached from the current one."""
        self.current_insn = None

    def add_jump(self, target: LabelInfo, branch: int) -> None:
        self._jumps.append((self.current_insn, target, branch))

    def add_probe(self, probe_id: int, branch: int) -> None:
        executed = (
            self.probes is not None
            and probe_id < len(self.probes)
            and self.probes[probe_id]
        )
        self.current_insn.add_probe_branch(executed, branch)

    def get_instructions(self) -> list[Instruction]:
        """Wire the recorded jumps and return all instructions in order."""
        for source, target, branch in self._jumps:
            if target.instruction is not None:
                source.add_branch_to(target.instruction, branch)
        self._jumps.clear()
        return self.instructions
