from collections import namedtuple
from ctypes import c_uint32
from functools import partial
import logging
import struct
from types import MappingProxyType

# Python Cookbook: Section 13.12
log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())


REGISTERS = {
    # names     # aliases
    'x0':  0,   'zero': 0,
    'x1':  1,   'ra':   1,
    'x2':  2,   'sp':   2,
    'x3':  3,   'gp':   3,
    'x4':  4,   'tp':   4,
    'x5':  5,   't0':   5,
    'x6':  6,   't1':   6,
    'x7':  7,   't2':   7,
    'x8':  8,   's0':   8,
    'x9':  9,   's1':   9,
    'x10': 10,  'a0':   10,
    'x11': 11,  'a1':   11,
    'x12': 12,  'a2':   12,
    'x13': 13,  'a3':   13,
    'x14': 14,  'a4':   14,
    'x15': 15,  'a5':   15,
    'x16': 16,  'a6':   16,
    'x17': 17,  'a7':   17,
    'x18': 18,  's2':   18,
    'x19': 19,  's3':   19,
    'x20': 20,  's4':   20,
    'x21': 21,  's5':   21,
    'x22': 22,  's6':   22,
    'x23': 23,  's7':   23,
    'x24': 24,  's8':   24,
    'x25': 25,  's9':   25,
    'x26': 26,  's10':  26,
    'x27': 27,  's11':  27,
    'x28': 28,  't3':   28,
    'x29': 29,  't4':   29,
    'x30': 30,  't5':   30,
    'x31': 31,  't6':   31,
}

ABI_NAMES = (
    'zero', 'ra', 'sp', 'gp', 'tp', 't0', 't1', 't2',
    's0',   's1', 'a0', 'a1', 'a2', 'a3', 'a4', 'a5',
    'a6',   'a7', 's2', 's3', 's4', 's5', 's6', 's7',
    's8',   's9', 's10', 's11', 't3', 't4', 't5', 't6',
)

# read-only counters from the Zicntr extension
CSR_NAMES = {
    'cycle':    0xc00,
    'time':     0xc01,
    'instret':  0xc02,
    'cycleh':   0xc80,
    'timeh':    0xc81,
    'instreth': 0xc82,
}

FENCE_BITS = {
    'i': 0b1000,
    'o': 0b0100,
    'r': 0b0010,
    'w': 0b0001,
}

# argument kinds
REGISTER = 'REGISTER'
MEMORY_LOCATION = 'MEMORY LOCATION'
I_IMMEDIATE = 'I IMMEDIATE'
B_IMMEDIATE = 'B IMMEDIATE'
U_IMMEDIATE = 'U IMMEDIATE'
J_IMMEDIATE = 'J IMMEDIATE'
SHAMT = 'SHAMT'
CSR_IMMEDIATE = 'CSR IMMEDIATE'
ZIMM = 'ZIMM'
FENCE_SET = 'FENCE SET'

# (lowest, highest, must be even)
LIMITS = {
    I_IMMEDIATE:   (-2048,    2047,    False),
    B_IMMEDIATE:   (-4096,    4094,    True),
    U_IMMEDIATE:   (0,        1048575, False),
    J_IMMEDIATE:   (-1048576, 1048574, True),
    SHAMT:         (0,        31,      False),
    CSR_IMMEDIATE: (0,        4095,    False),
    ZIMM:          (0,        31,      False),
}

# formats
R = 'R'
I = 'I'  # noqa: E741
S = 'S'
B = 'B'
U = 'U'
J = 'J'
CSR = 'CSR'
I_SHIFT = 'I-SHIFT'

# (header, width) from the most significant bit down
FORMAT_FIELDS = {
    R:       (('funct7', 7), ('rs2', 5), ('rs1', 5), ('funct3', 3), ('rd', 5), ('opcode', 7)),
    I:       (('imm[11:0]', 12), ('rs1', 5), ('funct3', 3), ('rd', 5), ('opcode', 7)),
    S:       (('imm[11:5]', 7), ('rs2', 5), ('rs1', 5), ('funct3', 3), ('imm[4:0]', 5), ('opcode', 7)),
    B:       (('imm[12|10:5]', 7), ('rs2', 5), ('rs1', 5), ('funct3', 3), ('imm[4:1|11]', 5), ('opcode', 7)),
    U:       (('imm[31:12]', 20), ('rd', 5), ('opcode', 7)),
    J:       (('imm[20|10:1|11|19:12]', 20), ('rd', 5), ('opcode', 7)),
    CSR:     (('csr', 12), ('rs1', 5), ('funct3', 3), ('rd', 5), ('opcode', 7)),
    I_SHIFT: (('funct7', 7), ('shamt', 5), ('rs1', 5), ('funct3', 3), ('rd', 5), ('opcode', 7)),
}


# low-level funcs just raise value errors
# high-level funcs catch them and raise an AssemblerError with context
class AssemblerError(Exception):

    def __init__(self, message, instruction, expected=None, actual=None, position=None):
        super().__init__(message)
        self.message = message
        self.instruction = instruction
        self.expected = expected
        self.actual = actual
        self.position = position

    def __str__(self):
        s = '{}\nAssemblerError: {}'.format(self.instruction, self.message)
        if self.expected is not None:
            s += '\nExpected: {}'.format(self.expected)
        if self.actual is not None:
            s += '\nActual:   {}'.format(self.actual)
        return s


class UnknownMnemonic(AssemblerError):
    pass


class ArityMismatch(AssemblerError):
    """Expected holds every accepted operand count, in ascending order"""

    def __str__(self):
        s = '{}\nAssemblerError: {}\nExpected: {}\nActual:   {}'
        s = s.format(self.instruction, self.message, ' or '.join(str(count) for count in self.expected), self.actual)
        return s


class InvalidArgument(AssemblerError):
    """Raised for a single operand, position is 1-based"""


class InvalidRegister(InvalidArgument):
    pass


class InvalidImmediate(InvalidArgument):
    pass


class MalformedMemoryOperand(InvalidArgument):
    pass


class InvalidFenceSet(InvalidArgument):
    pass


class PseudoExpansionError(AssemblerError):
    pass


def lookup_register(reg):
    try:
        return REGISTERS[reg]
    except (KeyError, TypeError):
        raise ValueError('invalid register: {}'.format(reg)) from None


def register_name(index):
    return 'x{}'.format(index)


def abi_name(index):
    return ABI_NAMES[index]


def parse_immediate(literal):
    """
    Parse a decimal, 0b binary or 0x hex literal with an optional leading minus.

    The literal must be written exactly the way it would be printed back
    in the same base: lowercase, no leading zeros, no plus sign, no
    underscores or whitespace.
    """
    text = literal
    negative = text.startswith('-')
    if negative:
        text = text[1:]

    if text.startswith('0b'):
        digits, base, format_spec = text[2:], 2, 'b'
    elif text.startswith('0x'):
        digits, base, format_spec = text[2:], 16, 'x'
    elif text == '0':
        return 0
    elif text.startswith('0'):
        raise ValueError('immediate has a leading zero: {}'.format(literal))
    else:
        digits, base, format_spec = text, 10, 'd'

    try:
        value = int(digits, base)
    except ValueError:
        raise ValueError('invalid immediate: {}'.format(literal)) from None

    if value < 0 or format(value, format_spec) != digits:
        raise ValueError('immediate is not in canonical form: {}'.format(literal))

    return -value if negative else value


def format_immediate(value, base=10):
    sign = '-' if value < 0 else ''
    if base == 2:
        return '{}0b{:b}'.format(sign, abs(value))
    if base == 16:
        return '{}0x{:x}'.format(sign, abs(value))
    return str(value)


def check_range(value, kind):
    low, high, even = LIMITS[kind]
    # an odd value just past an even bound reads as a parity error
    top = high + 1 if even else high
    if value < low or value > top:
        raise ValueError('immediate in range {}..{}'.format(low, high))
    if even and value % 2 != 0:
        raise ValueError('even immediate')
    return value


def parse_csr(text):
    if text in CSR_NAMES:
        return CSR_NAMES[text]
    return parse_immediate(text)


def parse_fence_set(text):
    if len(text) == 0:
        raise ValueError('empty fence set')

    bits = 0
    remaining = 'iorw'
    for char in text:
        index = remaining.find(char)
        if index == -1:
            raise ValueError('invalid fence set: {}'.format(text))
        bits |= FENCE_BITS[char]
        remaining = remaining[index + 1:]

    return bits


def format_fence_set(bits):
    return ''.join(char for char in 'iorw' if bits & FENCE_BITS[char])


def r_type(rd, rs1, rs2, *, opcode, funct3, funct7):
    code = 0
    code |= opcode
    code |= (rd & 0b11111) << 7
    code |= funct3 << 12
    code |= (rs1 & 0b11111) << 15
    code |= (rs2 & 0b11111) << 20
    code |= funct7 << 25

    return code


def i_type(rd, rs1, imm, *, opcode, funct3):
    imm = c_uint32(imm).value & 0b111111111111

    code = 0
    code |= opcode
    code |= (rd & 0b11111) << 7
    code |= funct3 << 12
    code |= (rs1 & 0b11111) << 15
    code |= imm << 20

    return code


# i-type variation for loads: rd, imm(rs1)
def load_type(rd, mem, *, opcode, funct3):
    rs1, imm = mem
    return i_type(rd, rs1, imm, opcode=opcode, funct3=funct3)


def s_type(rs2, mem, *, opcode, funct3):
    rs1, imm = mem
    imm = c_uint32(imm).value & 0b111111111111

    imm_11_5 = (imm >> 5) & 0b1111111
    imm_4_0 = imm & 0b11111

    code = 0
    code |= opcode
    code |= imm_4_0 << 7
    code |= funct3 << 12
    code |= (rs1 & 0b11111) << 15
    code |= (rs2 & 0b11111) << 20
    code |= imm_11_5 << 25

    return code


def b_type(rs1, rs2, imm, *, opcode, funct3):
    imm = c_uint32(imm).value & 0b1111111111111

    imm_12 = (imm >> 12) & 0b1
    imm_11 = (imm >> 11) & 0b1
    imm_10_5 = (imm >> 5) & 0b111111
    imm_4_1 = (imm >> 1) & 0b1111

    code = 0
    code |= opcode
    code |= imm_11 << 7
    code |= imm_4_1 << 8
    code |= funct3 << 12
    code |= (rs1 & 0b11111) << 15
    code |= (rs2 & 0b11111) << 20
    code |= imm_10_5 << 25
    code |= imm_12 << 31

    return code


def u_type(rd, imm, *, opcode):
    imm = imm & 0b11111111111111111111

    code = 0
    code |= opcode
    code |= (rd & 0b11111) << 7
    code |= imm << 12

    return code


def j_type(rd, imm, *, opcode):
    imm = c_uint32(imm).value & 0b111111111111111111111

    imm_20 = (imm >> 20) & 0b1
    imm_19_12 = (imm >> 12) & 0b11111111
    imm_11 = (imm >> 11) & 0b1
    imm_10_1 = (imm >> 1) & 0b1111111111

    code = 0
    code |= opcode
    code |= (rd & 0b11111) << 7
    code |= imm_19_12 << 12
    code |= imm_11 << 20
    code |= imm_10_1 << 21
    code |= imm_20 << 31

    return code


# the source slot holds either rs1 or a 5-bit zimm
def csr_type(rd, csr, source, *, opcode, funct3):
    csr = csr & 0b111111111111

    code = 0
    code |= opcode
    code |= (rd & 0b11111) << 7
    code |= funct3 << 12
    code |= (source & 0b11111) << 15
    code |= csr << 20

    return code


def fence_type(pred, succ, *, opcode, funct3, fm):
    imm = 0
    imm |= (fm & 0b1111) << 8
    imm |= (pred & 0b1111) << 4
    imm |= succ & 0b1111
    return i_type(0, 0, imm, opcode=opcode, funct3=funct3)


def r_text(name, rd, rs1, rs2):
    s = '{} x{},x{},x{}'
    s = s.format(name, rd, rs1, rs2)
    return s


def i_text(name, rd, rs1, imm):
    s = '{} x{},x{},{}'
    s = s.format(name, rd, rs1, imm)
    return s


def mem_text(name, reg, mem):
    rs1, imm = mem
    s = '{} x{},{}(x{})'
    s = s.format(name, reg, imm, rs1)
    return s


def b_text(name, rs1, rs2, imm):
    s = '{} x{},x{},{}'
    s = s.format(name, rs1, rs2, imm)
    return s


def u_text(name, rd, imm):
    s = '{} x{},0x{:x}'
    s = s.format(name, rd, imm)
    return s


def j_text(name, rd, imm):
    s = '{} x{},{}'
    s = s.format(name, rd, imm)
    return s


def csr_text(name, rd, csr, rs1):
    s = '{} x{},0x{:x},x{}'
    s = s.format(name, rd, csr, rs1)
    return s


def csri_text(name, rd, csr, zimm):
    s = '{} x{},0x{:x},{}'
    s = s.format(name, rd, csr, zimm)
    return s


def fence_text(name, pred, succ):
    s = '{} {},{}'
    s = s.format(name, format_fence_set(pred), format_fence_set(succ))
    return s


def none_text(name):
    return name


# RV32I Base Integer Instruction Set
LUI        = partial(u_type,     opcode=0b0110111)
AUIPC      = partial(u_type,     opcode=0b0010111)
JAL        = partial(j_type,     opcode=0b1101111)
JALR       = partial(i_type,     opcode=0b1100111, funct3=0b000)
BEQ        = partial(b_type,     opcode=0b1100011, funct3=0b000)
BNE        = partial(b_type,     opcode=0b1100011, funct3=0b001)
BLT        = partial(b_type,     opcode=0b1100011, funct3=0b100)
BGE        = partial(b_type,     opcode=0b1100011, funct3=0b101)
BLTU       = partial(b_type,     opcode=0b1100011, funct3=0b110)
BGEU       = partial(b_type,     opcode=0b1100011, funct3=0b111)
LB         = partial(load_type,  opcode=0b0000011, funct3=0b000)
LH         = partial(load_type,  opcode=0b0000011, funct3=0b001)
LW         = partial(load_type,  opcode=0b0000011, funct3=0b010)
LBU        = partial(load_type,  opcode=0b0000011, funct3=0b100)
LHU        = partial(load_type,  opcode=0b0000011, funct3=0b101)
SB         = partial(s_type,     opcode=0b0100011, funct3=0b000)
SH         = partial(s_type,     opcode=0b0100011, funct3=0b001)
SW         = partial(s_type,     opcode=0b0100011, funct3=0b010)
ADDI       = partial(i_type,     opcode=0b0010011, funct3=0b000)
SLTI       = partial(i_type,     opcode=0b0010011, funct3=0b010)
SLTIU      = partial(i_type,     opcode=0b0010011, funct3=0b011)
XORI       = partial(i_type,     opcode=0b0010011, funct3=0b100)
ORI        = partial(i_type,     opcode=0b0010011, funct3=0b110)
ANDI       = partial(i_type,     opcode=0b0010011, funct3=0b111)
SLLI       = partial(r_type,     opcode=0b0010011, funct3=0b001, funct7=0b0000000)
SRLI       = partial(r_type,     opcode=0b0010011, funct3=0b101, funct7=0b0000000)
SRAI       = partial(r_type,     opcode=0b0010011, funct3=0b101, funct7=0b0100000)
ADD        = partial(r_type,     opcode=0b0110011, funct3=0b000, funct7=0b0000000)
SUB        = partial(r_type,     opcode=0b0110011, funct3=0b000, funct7=0b0100000)
SLL        = partial(r_type,     opcode=0b0110011, funct3=0b001, funct7=0b0000000)
SLT        = partial(r_type,     opcode=0b0110011, funct3=0b010, funct7=0b0000000)
SLTU       = partial(r_type,     opcode=0b0110011, funct3=0b011, funct7=0b0000000)
XOR        = partial(r_type,     opcode=0b0110011, funct3=0b100, funct7=0b0000000)
SRL        = partial(r_type,     opcode=0b0110011, funct3=0b101, funct7=0b0000000)
SRA        = partial(r_type,     opcode=0b0110011, funct3=0b101, funct7=0b0100000)
OR         = partial(r_type,     opcode=0b0110011, funct3=0b110, funct7=0b0000000)
AND        = partial(r_type,     opcode=0b0110011, funct3=0b111, funct7=0b0000000)
FENCE      = partial(fence_type, opcode=0b0001111, funct3=0b000, fm=0b0000)
ECALL      = partial(i_type,     opcode=0b1110011, funct3=0b000, rd=0, rs1=0, imm=0)
EBREAK     = partial(i_type,     opcode=0b1110011, funct3=0b000, rd=0, rs1=0, imm=1)

# Zifencei Standard Extension for Instruction-Fetch Fence
FENCE_I    = partial(i_type,     opcode=0b0001111, funct3=0b001, rd=0, rs1=0, imm=0)

# Zicsr Standard Extension for CSR Instructions
CSRRW      = partial(csr_type,   opcode=0b1110011, funct3=0b001)
CSRRS      = partial(csr_type,   opcode=0b1110011, funct3=0b010)
CSRRC      = partial(csr_type,   opcode=0b1110011, funct3=0b011)
CSRRWI     = partial(csr_type,   opcode=0b1110011, funct3=0b101)
CSRRSI     = partial(csr_type,   opcode=0b1110011, funct3=0b110)
CSRRCI     = partial(csr_type,   opcode=0b1110011, funct3=0b111)


Instruction = namedtuple('Instruction', 'name args encode disassemble format')
PseudoInstruction = namedtuple('PseudoInstruction', 'name args base expand')


class Assembled(namedtuple('Assembled', 'code disassembly format')):
    __slots__ = ()

    @property
    def data(self):
        return struct.pack('<I', self.code)

    @property
    def fields(self):
        return split_fields(self.code, self.format)


# the packing functions each format tag may use
FORMAT_ENCODERS = {
    R:       (r_type,),
    I:       (i_type, load_type, fence_type),
    S:       (s_type,),
    B:       (b_type,),
    U:       (u_type,),
    J:       (j_type,),
    CSR:     (csr_type,),
    I_SHIFT: (r_type,),
}

RRR = (REGISTER, REGISTER, REGISTER)
RRI = (REGISTER, REGISTER, I_IMMEDIATE)
RRB = (REGISTER, REGISTER, B_IMMEDIATE)
RRS = (REGISTER, REGISTER, SHAMT)
RM = (REGISTER, MEMORY_LOCATION)
RCR = (REGISTER, CSR_IMMEDIATE, REGISTER)
RCZ = (REGISTER, CSR_IMMEDIATE, ZIMM)

BASE_INSTRUCTIONS = [
    Instruction('lui',     (REGISTER, U_IMMEDIATE),  LUI,     u_text,     U),
    Instruction('auipc',   (REGISTER, U_IMMEDIATE),  AUIPC,   u_text,     U),
    Instruction('jal',     (REGISTER, J_IMMEDIATE),  JAL,     j_text,     J),
    Instruction('jalr',    RRI,                      JALR,    i_text,     I),
    Instruction('beq',     RRB,                      BEQ,     b_text,     B),
    Instruction('bne',     RRB,                      BNE,     b_text,     B),
    Instruction('blt',     RRB,                      BLT,     b_text,     B),
    Instruction('bge',     RRB,                      BGE,     b_text,     B),
    Instruction('bltu',    RRB,                      BLTU,    b_text,     B),
    Instruction('bgeu',    RRB,                      BGEU,    b_text,     B),
    Instruction('lb',      RM,                       LB,      mem_text,   I),
    Instruction('lh',      RM,                       LH,      mem_text,   I),
    Instruction('lw',      RM,                       LW,      mem_text,   I),
    Instruction('lbu',     RM,                       LBU,     mem_text,   I),
    Instruction('lhu',     RM,                       LHU,     mem_text,   I),
    Instruction('sb',      RM,                       SB,      mem_text,   S),
    Instruction('sh',      RM,                       SH,      mem_text,   S),
    Instruction('sw',      RM,                       SW,      mem_text,   S),
    Instruction('addi',    RRI,                      ADDI,    i_text,     I),
    Instruction('slti',    RRI,                      SLTI,    i_text,     I),
    Instruction('sltiu',   RRI,                      SLTIU,   i_text,     I),
    Instruction('xori',    RRI,                      XORI,    i_text,     I),
    Instruction('ori',     RRI,                      ORI,     i_text,     I),
    Instruction('andi',    RRI,                      ANDI,    i_text,     I),
    Instruction('slli',    RRS,                      SLLI,    i_text,     I_SHIFT),
    Instruction('srli',    RRS,                      SRLI,    i_text,     I_SHIFT),
    Instruction('srai',    RRS,                      SRAI,    i_text,     I_SHIFT),
    Instruction('add',     RRR,                      ADD,     r_text,     R),
    Instruction('sub',     RRR,                      SUB,     r_text,     R),
    Instruction('sll',     RRR,                      SLL,     r_text,     R),
    Instruction('slt',     RRR,                      SLT,     r_text,     R),
    Instruction('sltu',    RRR,                      SLTU,    r_text,     R),
    Instruction('xor',     RRR,                      XOR,     r_text,     R),
    Instruction('srl',     RRR,                      SRL,     r_text,     R),
    Instruction('sra',     RRR,                      SRA,     r_text,     R),
    Instruction('or',      RRR,                      OR,      r_text,     R),
    Instruction('and',     RRR,                      AND,     r_text,     R),
    Instruction('fence',   (FENCE_SET, FENCE_SET),   FENCE,   fence_text, I),
    Instruction('fence.i', (),                       FENCE_I, none_text,  I),
    Instruction('ecall',   (),                       ECALL,   none_text,  I),
    Instruction('ebreak',  (),                       EBREAK,  none_text,  I),
    Instruction('csrrw',   RCR,                      CSRRW,   csr_text,   CSR),
    Instruction('csrrs',   RCR,                      CSRRS,   csr_text,   CSR),
    Instruction('csrrc',   RCR,                      CSRRC,   csr_text,   CSR),
    Instruction('csrrwi',  RCZ,                      CSRRWI,  csri_text,  CSR),
    Instruction('csrrsi',  RCZ,                      CSRRSI,  csri_text,  CSR),
    Instruction('csrrci',  RCZ,                      CSRRCI,  csri_text,  CSR),
]

PSEUDO_EXPANSIONS = [
    # name        args                           base      expand
    ('nop',       (),                            'addi',   lambda: (0, 0, 0)),
    ('li',        (REGISTER, I_IMMEDIATE),       'addi',   lambda rd, imm: (rd, 0, imm)),
    ('mv',        (REGISTER, REGISTER),          'addi',   lambda rd, rs: (rd, rs, 0)),
    ('not',       (REGISTER, REGISTER),          'xori',   lambda rd, rs: (rd, rs, -1)),
    ('neg',       (REGISTER, REGISTER),          'sub',    lambda rd, rs: (rd, 0, rs)),
    ('seqz',      (REGISTER, REGISTER),          'sltiu',  lambda rd, rs: (rd, rs, 1)),
    ('snez',      (REGISTER, REGISTER),          'sltu',   lambda rd, rs: (rd, 0, rs)),
    ('sltz',      (REGISTER, REGISTER),          'slt',    lambda rd, rs: (rd, rs, 0)),
    ('sgtz',      (REGISTER, REGISTER),          'slt',    lambda rd, rs: (rd, 0, rs)),
    ('beqz',      (REGISTER, B_IMMEDIATE),       'beq',    lambda rs, off: (rs, 0, off)),
    ('bnez',      (REGISTER, B_IMMEDIATE),       'bne',    lambda rs, off: (rs, 0, off)),
    ('blez',      (REGISTER, B_IMMEDIATE),       'bge',    lambda rs, off: (0, rs, off)),
    ('bgez',      (REGISTER, B_IMMEDIATE),       'bge',    lambda rs, off: (rs, 0, off)),
    ('bltz',      (REGISTER, B_IMMEDIATE),       'blt',    lambda rs, off: (rs, 0, off)),
    ('bgtz',      (REGISTER, B_IMMEDIATE),       'blt',    lambda rs, off: (0, rs, off)),
    ('bgt',       RRB,                           'blt',    lambda rs, rt, off: (rt, rs, off)),
    ('ble',       RRB,                           'bge',    lambda rs, rt, off: (rt, rs, off)),
    ('bgtu',      RRB,                           'bltu',   lambda rs, rt, off: (rt, rs, off)),
    ('bleu',      RRB,                           'bgeu',   lambda rs, rt, off: (rt, rs, off)),
    ('j',         (J_IMMEDIATE,),                'jal',    lambda off: (0, off)),
    ('jal',       (J_IMMEDIATE,),                'jal',    lambda off: (1, off)),
    ('jr',        (REGISTER,),                   'jalr',   lambda rs: (0, rs, 0)),
    ('jalr',      (REGISTER,),                   'jalr',   lambda rs: (1, rs, 0)),
    ('ret',       (),                            'jalr',   lambda: (0, 1, 0)),
    ('fence',     (),                            'fence',  lambda: (0b1111, 0b1111)),
    ('csrr',      (REGISTER, CSR_IMMEDIATE),     'csrrs',  lambda rd, csr: (rd, csr, 0)),
    ('csrw',      (CSR_IMMEDIATE, REGISTER),     'csrrw',  lambda csr, rs: (0, csr, rs)),
    ('csrs',      (CSR_IMMEDIATE, REGISTER),     'csrrs',  lambda csr, rs: (0, csr, rs)),
    ('csrc',      (CSR_IMMEDIATE, REGISTER),     'csrrc',  lambda csr, rs: (0, csr, rs)),
    ('csrwi',     (CSR_IMMEDIATE, ZIMM),         'csrrwi', lambda csr, imm: (0, csr, imm)),
    ('csrsi',     (CSR_IMMEDIATE, ZIMM),         'csrrsi', lambda csr, imm: (0, csr, imm)),
    ('csrci',     (CSR_IMMEDIATE, ZIMM),         'csrrci', lambda csr, imm: (0, csr, imm)),
    ('rdcycle',   (REGISTER,),                   'csrrs',  lambda rd: (rd, 0xc00, 0)),
    ('rdtime',    (REGISTER,),                   'csrrs',  lambda rd: (rd, 0xc01, 0)),
    ('rdinstret', (REGISTER,),                   'csrrs',  lambda rd: (rd, 0xc02, 0)),
    ('rdcycleh',  (REGISTER,),                   'csrrs',  lambda rd: (rd, 0xc80, 0)),
    ('rdtimeh',   (REGISTER,),                   'csrrs',  lambda rd: (rd, 0xc81, 0)),
    ('rdinstreth', (REGISTER,),                  'csrrs',  lambda rd: (rd, 0xc82, 0)),
]

# stand-in operand values used to check expansions when the table is built
SAMPLE_VALUES = {
    REGISTER:        0,
    MEMORY_LOCATION: (0, 0),
    I_IMMEDIATE:     0,
    B_IMMEDIATE:     0,
    U_IMMEDIATE:     0,
    J_IMMEDIATE:     0,
    SHAMT:           0,
    CSR_IMMEDIATE:   0,
    ZIMM:            0,
    FENCE_SET:       0b1111,
}


def build_instructions(instructions):
    table = {}
    for inst in instructions:
        if inst.format not in FORMAT_ENCODERS:
            raise RuntimeError('unknown format for {}: {}'.format(inst.name, inst.format))
        if inst.encode.func not in FORMAT_ENCODERS[inst.format]:
            raise RuntimeError('{} uses the wrong encoder for format {}'.format(inst.name, inst.format))
        if inst.name in table:
            raise RuntimeError('duplicate instruction: {}'.format(inst.name))
        table[inst.name] = inst
    return MappingProxyType(table)


def build_pseudo_instructions(expansions, instructions):
    table = {}
    for name, args, base_name, expand in expansions:
        base = instructions[base_name]
        sample = expand(*[SAMPLE_VALUES[kind] for kind in args])
        if len(sample) != len(base.args):
            s = '{} expands to {} operands but {} takes {}'
            s = s.format(name, len(sample), base.name, len(base.args))
            raise RuntimeError(s)
        if name in table:
            raise RuntimeError('duplicate pseudo-instruction: {}'.format(name))
        table[name] = PseudoInstruction(name, args, base, expand)
    return MappingProxyType(table)


INSTRUCTIONS = build_instructions(BASE_INSTRUCTIONS)
PSEUDO_INSTRUCTIONS = build_pseudo_instructions(PSEUDO_EXPANSIONS, INSTRUCTIONS)


def split_fields(code, fmt):
    """
    Break a 32-bit word into the named bit fields of its format.

    Returns a list of (header, bits) pairs from the most significant
    field down, where bits is a zero-padded binary string.
    """
    fields = []
    shift = 32
    for header, width in FORMAT_FIELDS[fmt]:
        shift -= width
        value = (code >> shift) & ((1 << width) - 1)
        fields.append((header, '{:0{}b}'.format(value, width)))
    return fields


def split_operands(text):
    parts = [part.strip() for part in text.split(',')]
    return [part for part in parts if len(part) > 0]


def immediate_expected(text):
    if text.startswith('0'):
        return 'immediate in decimal, binary or hex form'
    return 'immediate'


def resolve_immediate(text, kind):
    """Returns (value, None) or (None, expected) for an immediate token"""
    try:
        if kind == CSR_IMMEDIATE:
            value = parse_csr(text)
        else:
            value = parse_immediate(text)
    except ValueError:
        return None, immediate_expected(text)

    try:
        return check_range(value, kind), None
    except ValueError as e:
        return None, str(e)


def resolve_memory(line, position, part):
    def error(cls, expected):
        message = 'Invalid instruction argument {}.'.format(position)
        return cls(message, line, expected=expected, actual=part, position=position)

    open_index = part.find('(')
    close_index = part.find(')')
    if open_index == -1:
        raise error(MalformedMemoryOperand, 'opening bracket')
    if close_index != len(part) - 1:
        raise error(MalformedMemoryOperand, 'closing bracket as last character')

    imm, expected = resolve_immediate(part[:open_index].strip(), I_IMMEDIATE)
    if expected is not None:
        raise error(InvalidImmediate, expected)

    try:
        reg = lookup_register(part[open_index + 1:close_index].strip())
    except ValueError:
        raise error(InvalidRegister, 'register in brackets') from None

    return (reg, imm)


def parse_arguments(line, args, operands):
    """
    Validate each operand token against its argument kind.

    Returns a tuple of resolved values in operand order. Memory locations
    resolve to a (register, offset) pair and fence sets to a 4-bit mask.
    """
    if len(operands) != len(args):
        s = 'Too {} arguments to instruction.'
        s = s.format('few' if len(operands) < len(args) else 'many')
        raise ArityMismatch(s, line, expected=(len(args),), actual=len(operands))

    values = []
    for position, (kind, part) in enumerate(zip(args, operands), start=1):
        message = 'Invalid instruction argument {}.'.format(position)
        if kind == REGISTER:
            try:
                values.append(lookup_register(part))
            except ValueError:
                raise InvalidRegister(message, line, expected='register', actual=part, position=position) from None
        elif kind == MEMORY_LOCATION:
            values.append(resolve_memory(line, position, part))
        elif kind == FENCE_SET:
            try:
                values.append(parse_fence_set(part))
            except ValueError:
                expected = 'fence set (ordered subset of "iorw")'
                raise InvalidFenceSet(message, line, expected=expected, actual=part, position=position) from None
        elif kind in LIMITS:
            value, expected = resolve_immediate(part, kind)
            if expected is not None:
                raise InvalidImmediate(message, line, expected=expected, actual=part, position=position)
            values.append(value)
        else:
            raise RuntimeError('unknown argument kind: {}'.format(kind))

    return tuple(values)


def lookup_instruction(line, mnemonic, operands):
    name = mnemonic.lower()
    candidates = [table[name] for table in (INSTRUCTIONS, PSEUDO_INSTRUCTIONS) if name in table]
    if len(candidates) == 0:
        s = "'{}'".format(mnemonic)
        raise UnknownMnemonic('Could not parse the assembly mnemonic.', line, expected='an assembly mnemonic', actual=s)

    for candidate in candidates:
        if len(candidate.args) == len(operands):
            return candidate

    # overloaded mnemonics accept more than one operand count
    if len(candidates) > 1:
        counts = sorted(len(candidate.args) for candidate in candidates)
        if len(operands) < counts[0]:
            message = 'Too few arguments to instruction.'
        elif len(operands) > counts[-1]:
            message = 'Too many arguments to instruction.'
        else:
            message = 'Wrong number of arguments to instruction.'
        expected = tuple(counts)
        raise ArityMismatch(message, line, expected=expected, actual=len(operands))

    # a single candidate reports its own mismatch
    return candidates[0]


def expand_pseudo_instruction(line, pseudo, values):
    base_values = tuple(pseudo.expand(*values))
    if len(base_values) != len(pseudo.base.args):
        s = '{} expanded to {} operands for {}.'
        s = s.format(pseudo.name, len(base_values), pseudo.base.name)
        raise PseudoExpansionError(s, line, expected=len(pseudo.base.args), actual=len(base_values))
    return pseudo.base, base_values


def assemble(line):
    """
    Assemble a single line of RISC-V assembly.

    Returns an Assembled(code, disassembly, format) for the instruction,
    or None when the line holds nothing to assemble. Raises a subclass of
    AssemblerError describing the first problem found.
    """
    line = line.strip()
    if len(line) == 0:
        return None

    mnemonic, *rest = line.split(None, 1)
    operands = split_operands(rest[0]) if rest else []

    descriptor = lookup_instruction(line, mnemonic, operands)
    values = parse_arguments(line, descriptor.args, operands)

    inst = descriptor
    if isinstance(descriptor, PseudoInstruction):
        inst, values = expand_pseudo_instruction(line, descriptor, values)

    code = inst.encode(*values)
    disassembly = inst.disassemble(inst.name, *values)

    s = '"{}" -> "{}" = 0x{:08x}'
    s = s.format(line, disassembly, code)
    log.debug(s)

    return Assembled(code, disassembly, inst.format)
