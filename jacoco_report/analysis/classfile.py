"""
Parser for Java class files.

Only the parts needed for coverage analysis are decoded: the constant
pool, class/method names and flags, the SourceFile attribute and, per
method, the bytecode with its exception table and LineNumberTable.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional

from ..data.compact import decode_modified_utf8
from ..errors import ClassFormatError


CLASS_MAGIC = 0xCAFEBABE

ACC_PUBLIC = 0x0001
ACC_PRIVATE = 0x0002
ACC_STATIC = 0x0008
ACC_BRIDGE = 0x0040
ACC_NATIVE = 0x0100
ACC_INTERFACE = 0x0200
ACC_ABSTRACT = 0x0400
ACC_SYNTHETIC = 0x1000
ACC_ENUM = 0x4000
ACC_MODULE = 0x8000

# Constant pool tags
CONSTANT_UTF8 = 1
CONSTANT_INTEGER = 3
CONSTANT_FLOAT = 4
CONSTANT_LONG = 5
CONSTANT_DOUBLE = 6
CONSTANT_CLASS = 7
CONSTANT_STRING = 8
CONSTANT_FIELDREF = 9
CONSTANT_METHODREF = 10
CONSTANT_INTERFACE_METHODREF = 11
CONSTANT_NAME_AND_TYPE = 12
CONSTANT_METHOD_HANDLE = 15
CONSTANT_METHOD_TYPE = 16
CONSTANT_DYNAMIC = 17
CONSTANT_INVOKE_DYNAMIC = 18
CONSTANT_MODULE = 19
CONSTANT_PACKAGE = 20

# Payload size of the fixed-size constant pool entries
_CONSTANT_SIZES = {
    CONSTANT_INTEGER: 4,
    CONSTANT_FLOAT: 4,
    CONSTANT_LONG: 8,
    CONSTANT_DOUBLE: 8,
    CONSTANT_CLASS: 2,
    CONSTANT_STRING: 2,
    CONSTANT_FIELDREF: 4,
    CONSTANT_METHODREF: 4,
    CONSTANT_INTERFACE_METHODREF: 4,
    CONSTANT_NAME_AND_TYPE: 4,
    CONSTANT_METHOD_HANDLE: 3,
    CONSTANT_METHOD_TYPE: 2,
    CONSTANT_DYNAMIC: 4,
    CONSTANT_INVOKE_DYNAMIC: 4,
    CONSTANT_MODULE: 2,
    CONSTANT_PACKAGE: 2,
}


# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------

ALOAD_0 = 0x2A
IFEQ = 0x99
IF_ACMPNE = 0xA6
GOTO = 0xA7
JSR = 0xA8
RET = 0xA9
TABLESWITCH = 0xAA
LOOKUPSWITCH = 0xAB
IRETURN = 0xAC
RETURN = 0xB1
INVOKEVIRTUAL = 0xB6
INVOKESPECIAL = 0xB7
INVOKESTATIC = 0xB8
INVOKEINTERFACE = 0xB9
INVOKEDYNAMIC = 0xBA
ATHROW = 0xBF
WIDE = 0xC4
IFNULL = 0xC6
IFNONNULL = 0xC7
GOTO_W = 0xC8
JSR_W = 0xC9
IINC = 0x84

# Instruction kinds, as far as control flow is concerned
KIND_PLAIN = "plain"
KIND_INVOKE = "invoke"
KIND_JUMP = "jump"
KIND_SWITCH = "switch"
KIND_EXIT = "exit"
KIND_SUBROUTINE = "subroutine"


def _operand_sizes() -> list[Optional[int]]:
    """Operand byte counts per opcode; None marks variable length or invalid."""
    sizes: list[Optional[int]] = [None] * 256
    for op in range(0x00, 0x10):
        sizes[op] = 0
    sizes[0x10] = 1  # bipush
    sizes[0x11] = 2  # sipush
    sizes[0x12] = 1  # ldc
    sizes[0x13] = 2  # ldc_w
    sizes[0x14] = 2  # ldc2_w
    for op in range(0x15, 0x1A):
        sizes[op] = 1  # xload
    for op in range(0x1A, 0x36):
        sizes[op] = 0  # xload_n, xaload
    for op in range(0x36, 0x3B):
        sizes[op] = 1  # xstore
    for op in range(0x3B, 0x84):
        sizes[op] = 0  # xstore_n, xastore, stack, arithmetic
    sizes[IINC] = 2
    for op in range(0x85, 0x99):
        sizes[op] = 0  # conversions, comparisons
    for op in range(IFEQ, RET):
        sizes[op] = 2  # conditional jumps, goto, jsr
    sizes[RET] = 1
    for op in range(IRETURN, RETURN + 1):
        sizes[op] = 0
    for op in range(0xB2, INVOKEINTERFACE):
        sizes[op] = 2  # field access, invokevirtual/special/static
    sizes[INVOKEINTERFACE] = 4
    sizes[INVOKEDYNAMIC] = 4
    sizes[0xBB] = 2  # new
    sizes[0xBC] = 1  # newarray
    sizes[0xBD] = 2  # anewarray
    sizes[0xBE] = 0  # arraylength
    sizes[ATHROW] = 0
    sizes[0xC0] = 2  # checkcast
    sizes[0xC1] = 2  # instanceof
    sizes[0xC2] = 0  # monitorenter
    sizes[0xC3] = 0  # monitorexit
    sizes[0xC5] = 3  # multianewarray
    sizes[IFNULL] = 2
    sizes[IFNONNULL] = 2
    sizes[GOTO_W] = 4
    sizes[JSR_W] = 4
    return sizes


OPERAND_SIZES = _operand_sizes()


@dataclass
class Insn:
    """One decoded bytecode instruction."""
    offset: int
    opcode: int
    kind: str = KIND_PLAIN
    # Jump target, or the default target of a switch
    target: Optional[int] = None
    # Case targets of a switch, in table order (may repeat)
    switch_targets: list[int] = field(default_factory=list)
    # Constant pool index of invoked methods
    cp_index: Optional[int] = None


def decode_instructions(code: bytes) -> list[Insn]:
    """Decode a method's bytecode into a list of instructions."""
    insns = []
    pc = 0
    n = len(code)
    try:
        while pc < n:
            opcode = code[pc]
            insn = Insn(offset=pc, opcode=opcode)

            if opcode == TABLESWITCH:
                p = (pc + 4) & ~3
                default, low, high = struct.unpack_from('>iii', code, p)
                count = high - low + 1
                offsets = struct.unpack_from(f'>{count}i', code, p + 12)
                insn.kind = KIND_SWITCH
                insn.target = pc + default
                insn.switch_targets = [pc + o for o in offsets]
                pc = p + 12 + 4 * count
            elif opcode == LOOKUPSWITCH:
                p = (pc + 4) & ~3
                default, npairs = struct.unpack_from('>ii', code, p)
                pairs = struct.unpack_from(f'>{2 * npairs}i', code, p + 8)
                insn.kind = KIND_SWITCH
                insn.target = pc + default
                insn.switch_targets = [pc + o for o in pairs[1::2]]
                pc = p + 8 + 8 * npairs
            elif opcode == WIDE:
                if code[pc + 1] == RET:
                    insn.kind = KIND_SUBROUTINE
                pc += 6 if code[pc + 1] == IINC else 4
            else:
                size = OPERAND_SIZES[opcode]
                if size is None:
                    raise ClassFormatError(f"Invalid opcode 0x{opcode:02x} at offset {pc}")
                if IFEQ <= opcode <= JSR or opcode in (IFNULL, IFNONNULL):
                    insn.target = pc + struct.unpack_from('>h', code, pc + 1)[0]
                    insn.kind = KIND_SUBROUTINE if opcode == JSR else KIND_JUMP
                elif opcode in (GOTO_W, JSR_W):
                    insn.target = pc + struct.unpack_from('>i', code, pc + 1)[0]
                    insn.kind = KIND_SUBROUTINE if opcode == JSR_W else KIND_JUMP
                    # goto_w behaves exactly like goto
                    if opcode == GOTO_W:
                        insn.opcode = GOTO
                elif opcode == RET:
                    insn.kind = KIND_SUBROUTINE
                elif IRETURN <= opcode <= RETURN or opcode == ATHROW:
                    insn.kind = KIND_EXIT
                elif INVOKEVIRTUAL <= opcode <= INVOKEDYNAMIC:
                    insn.kind = KIND_INVOKE
                    insn.cp_index = struct.unpack_from('>H', code, pc + 1)[0]
                pc += 1 + size
            insns.append(insn)
    except (struct.error, IndexError) as e:
        raise ClassFormatError(f"Truncated bytecode at offset {pc}") from e
    return insns


# ---------------------------------------------------------------------------
# Class structure
# ---------------------------------------------------------------------------

@dataclass
class ExceptionHandler:
    start_pc: int
    end_pc: int
    handler_pc: int
    catch_type: int


@dataclass
class CodeAttribute:
    code: bytes
    exception_table: list[ExceptionHandler] = field(default_factory=list)
    # (start_pc, line_number) pairs in table order
    line_numbers: list[tuple[int, int]] = field(default_factory=list)

    def instructions(self) -> list[Insn]:
        return decode_instructions(self.code)


@dataclass
class MethodInfo:
    access_flags: int
    name: str
    descriptor: str
    signature: Optional[str] = None
    code: Optional[CodeAttribute] = None

    def has_flag(self, flag: int) -> bool:
        return (self.access_flags & flag) != 0


@dataclass
class FieldInfo:
    access_flags: int
    name: str
    descriptor: str


@dataclass
class ClassFile:
    minor_version: int
    major_version: int
    access_flags: int
    name: str
    super_name: Optional[str]
    interfaces: list[str] = field(default_factory=list)
    fields: list[FieldInfo] = field(default_factory=list)
    methods: list[MethodInfo] = field(default_factory=list)
    source_file: Optional[str] = None
    signature: Optional[str] = None
    constant_pool: list = field(default_factory=list, repr=False)

    def has_flag(self, flag: int) -> bool:
        return (self.access_flags & flag) != 0

    @property
    def package_name(self) -> str:
        """Package in VM notation ("org/example"), empty for the default package."""
        pos = self.name.rfind('/')
        return self.name[:pos] if pos >= 0 else ""

    def method_ref(self, index: int) -> tuple[str, str, str]:
        """Resolve a (Interface)Methodref to (owner, name, descriptor)."""
        entry = self.constant_pool[index]
        if entry is None or entry[0] not in (CONSTANT_METHODREF, CONSTANT_INTERFACE_METHODREF):
            raise ClassFormatError(f"Constant #{index} is not a method reference")
        _, class_index, nat_index = entry
        owner = _class_name(self.constant_pool, class_index)
        _, name_index, desc_index = self.constant_pool[nat_index]
        return owner, _utf8(self.constant_pool, name_index), _utf8(self.constant_pool, desc_index)


def _utf8(pool: list, index: int) -> str:
    try:
        entry = pool[index]
    except IndexError:
        entry = None
    if entry is None or entry[0] != CONSTANT_UTF8:
        raise ClassFormatError(f"Constant #{index} is not a UTF8 entry")
    return entry[1]


def _class_name(pool: list, index: int) -> str:
    try:
        entry = pool[index]
    except IndexError:
        entry = None
    if entry is None or entry[0] != CONSTANT_CLASS:
        raise ClassFormatError(f"Constant #{index} is not a class entry")
    return _utf8(pool, entry[1])


class _ClassReader:
    """Sequential big endian reader over the class file bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def u1(self) -> int:
        value = self.data[self.pos]
        self.pos += 1
        return value

    def u2(self) -> int:
        value = struct.unpack_from('>H', self.data, self.pos)[0]
        self.pos += 2
        return value

    def u4(self) -> int:
        value = struct.unpack_from('>I', self.data, self.pos)[0]
        self.pos += 4
        return value

    def bytes(self, size: int) -> bytes:
        if self.pos + size > len(self.data):
            raise ClassFormatError("Unexpected end of class file")
        value = self.data[self.pos:self.pos + size]
        self.pos += size
        return value


def _read_constant_pool(reader: _ClassReader) -> list:
    count = reader.u2()
    pool: list = [None] * count
    i = 1
    while i < count:
        tag = reader.u1()
        if tag == CONSTANT_UTF8:
            length = reader.u2()
            raw = reader.bytes(length)
            try:
                pool[i] = (tag, decode_modified_utf8(raw))
            except UnicodeDecodeError as e:
                raise ClassFormatError(f"Malformed UTF8 constant #{i}") from e
        elif tag in (CONSTANT_CLASS, CONSTANT_STRING, CONSTANT_METHOD_TYPE,
                     CONSTANT_MODULE, CONSTANT_PACKAGE):
            pool[i] = (tag, reader.u2())
        elif tag in (CONSTANT_FIELDREF, CONSTANT_METHODREF, CONSTANT_INTERFACE_METHODREF,
                     CONSTANT_NAME_AND_TYPE, CONSTANT_DYNAMIC, CONSTANT_INVOKE_DYNAMIC):
            pool[i] = (tag, reader.u2(), reader.u2())
        elif tag in _CONSTANT_SIZES:
            pool[i] = (tag, reader.bytes(_CONSTANT_SIZES[tag]))
        else:
            raise ClassFormatError(f"Unknown constant pool tag {tag} at #{i}")
        # Long and double constants take two slots
        i += 2 if tag in (CONSTANT_LONG, CONSTANT_DOUBLE) else 1
    return pool


def _read_code(reader: _ClassReader, pool: list) -> CodeAttribute:
    reader.u2()  # max_stack
    reader.u2()  # max_locals
    code = reader.bytes(reader.u4())
    handlers = []
    for _ in range(reader.u2()):
        handlers.append(ExceptionHandler(reader.u2(), reader.u2(), reader.u2(), reader.u2()))
    attribute = CodeAttribute(code=code, exception_table=handlers)
    for _ in range(reader.u2()):
        name = _utf8(pool, reader.u2())
        length = reader.u4()
        if name == "LineNumberTable":
            for _ in range(reader.u2()):
                start_pc = reader.u2()
                attribute.line_numbers.append((start_pc, reader.u2()))
        else:
            reader.bytes(length)
    return attribute


def _read_member_attributes(reader: _ClassReader, pool: list) -> dict:
    attributes = {}
    for _ in range(reader.u2()):
        name = _utf8(pool, reader.u2())
        length = reader.u4()
        if name == "Code":
            end = reader.pos + length
            attributes[name] = _read_code(reader, pool)
            reader.pos = end
        elif name == "Signature":
            attributes[name] = _utf8(pool, reader.u2())
        else:
            reader.bytes(length)
    return attributes


def parse_class(data: bytes) -> ClassFile:
    """
    Parse raw class file bytes.

    Raises:
        ClassFormatError: if the bytes are not a well formed class file
    """
    reader = _ClassReader(data)
    try:
        if reader.u4() != CLASS_MAGIC:
            raise ClassFormatError("Not a class file (bad magic number)")
        minor = reader.u2()
        major = reader.u2()
        pool = _read_constant_pool(reader)
        access_flags = reader.u2()
        this_index = reader.u2()
        super_index = reader.u2()
        name = _class_name(pool, this_index)
        super_name = _class_name(pool, super_index) if super_index else None
        interfaces = [_class_name(pool, reader.u2()) for _ in range(reader.u2())]

        fields = []
        for _ in range(reader.u2()):
            flags = reader.u2()
            field_name = _utf8(pool, reader.u2())
            descriptor = _utf8(pool, reader.u2())
            _read_member_attributes(reader, pool)
            fields.append(FieldInfo(flags, field_name, descriptor))

        methods = []
        for _ in range(reader.u2()):
            flags = reader.u2()
            method_name = _utf8(pool, reader.u2())
            descriptor = _utf8(pool, reader.u2())
            attributes = _read_member_attributes(reader, pool)
            methods.append(MethodInfo(
                access_flags=flags,
                name=method_name,
                descriptor=descriptor,
                signature=attributes.get("Signature"),
                code=attributes.get("Code"),
            ))

        source_file = None
        signature = None
        for _ in range(reader.u2()):
            attr_name = _utf8(pool, reader.u2())
            length = reader.u4()
            if attr_name == "SourceFile":
                source_file = _utf8(pool, reader.u2())
            elif attr_name == "Signature":
                signature = _utf8(pool, reader.u2())
            else:
                reader.bytes(length)
    except (struct.error, IndexError) as e:
        raise ClassFormatError("Unexpected end of class file") from e

    return ClassFile(
        minor_version=minor,
        major_version=major,
        access_flags=access_flags,
        name=name,
        super_name=super_name,
        interfaces=interfaces,
        fields=fields,
        methods=methods,
        source_file=source_file,
        signature=signature,
        constant_pool=pool,
    )
