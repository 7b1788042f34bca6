"""
Methods left out of the coverage report.

Compilers generate methods nobody wrote. Counting them would only produce
noise, so these are dropped after analysis (their probes still count).
"""

from .classfile import (
    ACC_BRIDGE,
    ACC_ENUM,
    ACC_PRIVATE,
    ACC_SYNTHETIC,
    ALOAD_0,
    INVOKESPECIAL,
    RETURN,
    ClassFile,
    Insn,
    MethodInfo,
)


def is_synthetic(class_file: ClassFile, method: MethodInfo, insns: list[Insn]) -> bool:
    # Lambda bodies are synthetic too, but contain user code
    return method.has_flag(ACC_SYNTHETIC) and not method.name.startswith("lambda$")


def is_bridge(class_file: ClassFile, method: MethodInfo, insns: list[Insn]) -> bool:
    return method.has_flag(ACC_BRIDGE)


def is_enum_generated(class_file: ClassFile, method: MethodInfo, insns: list[Insn]) -> bool:
    """values() and valueOf(String) of an enum."""
    if not class_file.has_flag(ACC_ENUM) or class_file.super_name != "java/lang/Enum":
        return False
    own_type = f"L{class_file.name};"
    if method.name == "values":
        return method.descriptor == f"()[{own_type}"
    if method.name == "valueOf":
        return method.descriptor == f"(Ljava/lang/String;){own_type}"
    return False


def is_private_empty_constructor(class_file: ClassFile, method: MethodInfo, insns: list[Insn]) -> bool:
    """private Foo() {} - typically used to hide utility class constructors."""
    if method.name != "<init>" or method.descriptor != "()V" or not method.has_flag(ACC_PRIVATE):
        return False
    if [i.opcode for i in insns] != [ALOAD_0, INVOKESPECIAL, RETURN]:
        return False
    _, name, descriptor = class_file.method_ref(insns[1].cp_index)
    return name == "<init>" and descriptor == "()V"


METHOD_FILTERS = [
    is_synthetic,
    is_bridge,
    is_enum_generated,
    is_private_empty_constructor,
]


def is_filtered(class_file: ClassFile, method: MethodInfo, insns: list[Insn]) -> bool:
    return any(f(class_file, method, insns) for f in METHOD_FILTERS)
