import struct

import pytest

from anvil import asm


@pytest.mark.parametrize(
    'line,                   code,       disassembly', [
    ('add x1, x2, x1',       0x001100b3, 'add x1,x2,x1'),
    ('addi x5, x0, 10',      0x00a00293, 'addi x5,x0,10'),
    ('lw a0, 4(sp)',         0x00412503, 'lw x10,4(x2)'),
    ('sw t0, -8(sp)',        0xfe512c23, 'sw x5,-8(x2)'),
    ('beq ra, sp, -16',      0xfe2088e3, 'beq x1,x2,-16'),
    ('lui t0, 0x12345',      0x123452b7, 'lui x5,0x12345'),
    ('jal ra, 2048',         0x001000ef, 'jal x1,2048'),
    ('jalr zero, ra, 0',     0x00008067, 'jalr x0,x1,0'),
    ('slli x1, x2, 0b11',    0x00311093, 'slli x1,x2,3'),
    ('srai x1, x2, 31',      0x41f15093, 'srai x1,x2,31'),
    ('csrrw ra, cycle, sp',  0xc00110f3, 'csrrw x1,0xc00,x2'),
    ('csrrwi x1, 0x305, 5',  0x3052d0f3, 'csrrwi x1,0x305,5'),
    ('fence rw, w',          0x0310000f, 'fence rw,w'),
    ('fence.i',              0x0000100f, 'fence.i'),
    ('ecall',                0x00000073, 'ecall'),
    ('ebreak',               0x00100073, 'ebreak'),
])
def test_assemble(line, code, disassembly):
    result = asm.assemble(line)
    assert result.code == code
    assert result.disassembly == disassembly
    assert result.data == struct.pack('<I', code)


@pytest.mark.parametrize(
    'line,                  fmt', [
    ('add x1, x2, x3',      asm.R),
    ('addi x1, x2, 3',      asm.I),
    ('lw x1, 0(x2)',        asm.I),
    ('slli x1, x2, 3',      asm.I_SHIFT),
    ('sw x1, 0(x2)',        asm.S),
    ('bne x1, x2, 8',       asm.B),
    ('auipc x1, 1',         asm.U),
    ('jal x1, 8',           asm.J),
    ('csrrs x1, time, x0',  asm.CSR),
    ('nop',                 asm.I),
    ('j 8',                 asm.J),
])
def test_assemble_format(line, fmt):
    assert asm.assemble(line).format == fmt


@pytest.mark.parametrize(
    'line', [
    '',
    '   ',
    '\t',
])
def test_assemble_empty(line):
    assert asm.assemble(line) is None


@pytest.mark.parametrize(
    'line', [
    'ADD x1, x2, x3',
    'Add x1, x2, x3',
    '  add   x1 ,x2,  x3  ',
    'add x1, x2, x3,',
    'add x1,, x2, x3',
])
def test_assemble_loose_syntax(line):
    assert asm.assemble(line).code == asm.ADD(1, 2, 3)


@pytest.mark.parametrize(
    'pseudo,               base', [
    ('nop',                'addi x0, x0, 0'),
    ('li a0, -42',         'addi a0, x0, -42'),
    ('mv a0, a1',          'addi a0, a1, 0'),
    ('not x1, x2',         'xori x1, x2, -1'),
    ('neg x1, x2',         'sub x1, x0, x2'),
    ('seqz x1, x2',        'sltiu x1, x2, 1'),
    ('snez x1, x2',        'sltu x1, x0, x2'),
    ('sltz x1, x2',        'slt x1, x2, x0'),
    ('sgtz x1, x2',        'slt x1, x0, x2'),
    ('beqz x1, 8',         'beq x1, x0, 8'),
    ('bnez x1, 8',         'bne x1, x0, 8'),
    ('blez x1, 8',         'bge x0, x1, 8'),
    ('bgez x1, 8',         'bge x1, x0, 8'),
    ('bltz x1, 8',         'blt x1, x0, 8'),
    ('bgtz x1, 8',         'blt x0, x1, 8'),
    ('bgt x1, x2, 8',      'blt x2, x1, 8'),
    ('ble x1, x2, 8',      'bge x2, x1, 8'),
    ('bgtu x1, x2, 8',     'bltu x2, x1, 8'),
    ('bleu x1, x2, 8',     'bgeu x2, x1, 8'),
    ('j -4',               'jal x0, -4'),
    ('jal -4',             'jal x1, -4'),
    ('jr t0',              'jalr x0, t0, 0'),
    ('jalr t0',            'jalr x1, t0, 0'),
    ('ret',                'jalr x0, x1, 0'),
    ('fence',              'fence iorw, iorw'),
    ('csrr a0, 0x340',     'csrrs a0, 0x340, x0'),
    ('csrw 0x340, a0',     'csrrw x0, 0x340, a0'),
    ('csrs 0x300, a0',     'csrrs x0, 0x300, a0'),
    ('csrc 0x300, a0',     'csrrc x0, 0x300, a0'),
    ('csrwi 0x340, 3',     'csrrwi x0, 0x340, 3'),
    ('csrsi 0x300, 8',     'csrrsi x0, 0x300, 8'),
    ('csrci 0x300, 8',     'csrrci x0, 0x300, 8'),
    ('rdcycle a0',         'csrrs a0, cycle, x0'),
    ('rdcycleh a0',        'csrrs a0, cycleh, x0'),
    ('rdtime a0',          'csrrs a0, time, x0'),
    ('rdtimeh a0',         'csrrs a0, timeh, x0'),
    ('rdinstret a0',       'csrrs a0, instret, x0'),
    ('rdinstreth a0',      'csrrs a0, instreth, x0'),
])
def test_pseudo_instructions(pseudo, base):
    expanded = asm.assemble(pseudo)
    expected = asm.assemble(base)
    assert expanded == expected


def test_pseudo_known_words():
    assert asm.assemble('nop').code == 0x00000013
    assert asm.assemble('mv a0, a1').code == 0x00058513
    assert asm.assemble('ret').code == 0x00008067
    assert asm.assemble('not x1, x2').code == 0xfff14093
    assert asm.assemble('rdcycle a0').code == 0xc0002573
    assert asm.assemble('rdtime t0').code == 0xc01022f3
    assert asm.assemble('fence').code == 0x0ff0000f


def test_pseudo_disassembles_as_base():
    assert asm.assemble('nop').disassembly == 'addi x0,x0,0'
    assert asm.assemble('ret').disassembly == 'jalr x0,x1,0'
    assert asm.assemble('j 8').disassembly == 'jal x0,8'
    assert asm.assemble('csrr a0, cycle').disassembly == 'csrrs x10,0xc00,x0'


@pytest.mark.parametrize(
    'line', [
    'add x1, x2, x3',
    'sub s0, s1, s2',
    'addi a0, a1, -2048',
    'xori t0, t1, 0x7ff',
    'sltiu x1, x2, 0b1',
    'lb x1, -1(x2)',
    'lhu x1, 2047(x2)',
    'sb x1, -2048(x2)',
    'sh x1, 0(x0)',
    'bge x1, x2, -4096',
    'bltu x1, x2, 4094',
    'lui x1, 1048575',
    'auipc x1, 0',
    'jal x0, -1048576',
    'jal x31, 1048574',
    'jalr x1, x2, -4',
    'srli x1, x2, 0',
    'csrrc x1, 4095, x2',
    'csrrsi x1, instret, 31',
    'fence i, o',
    'fence.i',
    'li a0, 2047',
    'bgt a0, a1, -8',
    'csrwi 0x340, 3',
])
def test_disassembly_reassembles(line):
    first = asm.assemble(line)
    second = asm.assemble(first.disassembly)
    assert second.code == first.code
    assert second.disassembly == first.disassembly


# one legal operand per argument kind
SAMPLE_OPERANDS = {
    asm.REGISTER:        't1',
    asm.MEMORY_LOCATION: '-12(s0)',
    asm.I_IMMEDIATE:     '-7',
    asm.B_IMMEDIATE:     '-8',
    asm.U_IMMEDIATE:     '0x12345',
    asm.J_IMMEDIATE:     '2048',
    asm.SHAMT:           '7',
    asm.CSR_IMMEDIATE:   '0x305',
    asm.ZIMM:            '9',
    asm.FENCE_SET:       'rw',
}


@pytest.mark.parametrize('name', sorted(asm.INSTRUCTIONS))
def test_every_instruction_reassembles(name):
    inst = asm.INSTRUCTIONS[name]
    operands = ', '.join(SAMPLE_OPERANDS[kind] for kind in inst.args)
    line = '{} {}'.format(name, operands) if operands else name

    first = asm.assemble(line)
    second = asm.assemble(first.disassembly)
    assert first.disassembly.split()[0] == name
    assert second.code == first.code
    assert second.disassembly == first.disassembly


def test_overloaded_mnemonics():
    assert asm.assemble('jal x1, 8') == asm.assemble('jal 8')
    assert asm.assemble('jalr x1, x5, 0') == asm.assemble('jalr x5')
    assert asm.assemble('fence iorw, iorw') == asm.assemble('fence')


def test_unknown_mnemonic():
    with pytest.raises(asm.UnknownMnemonic) as e:
        asm.assemble('bogus x1, x2')
    assert e.value.message == 'Could not parse the assembly mnemonic.'
    assert e.value.expected == 'an assembly mnemonic'
    assert e.value.actual == "'bogus'"
    assert e.value.instruction == 'bogus x1, x2'


@pytest.mark.parametrize(
    'line,                    message,                                      expected, actual', [
    ('add x1, x2',            'Too few arguments to instruction.',          (3,),     2),
    ('add x1, x2, x3, x4',    'Too many arguments to instruction.',         (3,),     4),
    ('ecall x1',              'Too many arguments to instruction.',         (0,),     1),
    ('nop x0',                'Too many arguments to instruction.',         (0,),     1),
    ('lw x1',                 'Too few arguments to instruction.',          (2,),     1),
    ('jal',                   'Too few arguments to instruction.',          (1, 2),   0),
    ('jal x1, x2, 8',         'Too many arguments to instruction.',         (1, 2),   3),
    ('jalr x1, x2',           'Wrong number of arguments to instruction.',  (1, 3),   2),
    ('fence rw',              'Wrong number of arguments to instruction.',  (0, 2),   1),
])
def test_arity_mismatch(line, message, expected, actual):
    with pytest.raises(asm.ArityMismatch) as e:
        asm.assemble(line)
    assert e.value.message == message
    assert e.value.expected == expected
    assert e.value.actual == actual


@pytest.mark.parametrize(
    'line,                   error,                        position, expected', [
    ('add x1, x2, x32',      asm.InvalidRegister,          3,        'register'),
    ('add x99, x2, x3',      asm.InvalidRegister,          1,        'register'),
    ('add x1, 5, x3',        asm.InvalidRegister,          2,        'register'),
    ('addi x1, x2, 2048',    asm.InvalidImmediate,         3,        'immediate in range -2048..2047'),
    ('addi x1, x2, -2049',   asm.InvalidImmediate,         3,        'immediate in range -2048..2047'),
    ('addi x1, x2, 007',     asm.InvalidImmediate,         3,        'immediate in decimal, binary or hex form'),
    ('addi x1, x2, 0x0F',    asm.InvalidImmediate,         3,        'immediate in decimal, binary or hex form'),
    ('addi x1, x2, foo',     asm.InvalidImmediate,         3,        'immediate'),
    ('beq x1, x2, 3',        asm.InvalidImmediate,         3,        'even immediate'),
    ('beq x1, x2, 4095',     asm.InvalidImmediate,         3,        'even immediate'),
    ('beq x1, x2, 4096',     asm.InvalidImmediate,         3,        'immediate in range -4096..4094'),
    ('beq x1, x2, -4098',    asm.InvalidImmediate,         3,        'immediate in range -4096..4094'),
    ('jal x1, 1048575',      asm.InvalidImmediate,         2,        'even immediate'),
    ('jal x1, 1048576',      asm.InvalidImmediate,         2,        'immediate in range -1048576..1048574'),
    ('j 7',                  asm.InvalidImmediate,         1,        'even immediate'),
    ('lui x1, 1048576',      asm.InvalidImmediate,         2,        'immediate in range 0..1048575'),
    ('lui x1, -1',           asm.InvalidImmediate,         2,        'immediate in range 0..1048575'),
    ('slli x1, x2, 32',      asm.InvalidImmediate,         3,        'immediate in range 0..31'),
    ('csrrw x1, 4096, x2',   asm.InvalidImmediate,         2,        'immediate in range 0..4095'),
    ('csrrw x1, mstatus, x2', asm.InvalidImmediate,        2,        'immediate'),
    ('csrrwi x1, 0x305, 32', asm.InvalidImmediate,         3,        'immediate in range 0..31'),
    ('li x1, 4096',          asm.InvalidImmediate,         2,        'immediate in range -2048..2047'),
    ('lw x1, 4',             asm.MalformedMemoryOperand,   2,        'opening bracket'),
    ('lw x1, 4(sp',          asm.MalformedMemoryOperand,   2,        'closing bracket as last character'),
    ('lw x1, 4(sp))',        asm.MalformedMemoryOperand,   2,        'closing bracket as last character'),
    ('sw x1, (sp)',          asm.InvalidImmediate,         2,        'immediate'),
    ('lw x1, 2048(sp)',      asm.InvalidImmediate,         2,        'immediate in range -2048..2047'),
    ('lw x1, 4(x99)',        asm.InvalidRegister,          2,        'register in brackets'),
    ('fence rw, x',          asm.InvalidFenceSet,          2,        'fence set (ordered subset of "iorw")'),
    ('fence wr, r',          asm.InvalidFenceSet,          1,        'fence set (ordered subset of "iorw")'),
])
def test_invalid_argument(line, error, position, expected):
    with pytest.raises(error) as e:
        asm.assemble(line)
    assert isinstance(e.value, asm.InvalidArgument)
    assert e.value.message == 'Invalid instruction argument {}.'.format(position)
    assert e.value.position == position
    assert e.value.expected == expected


def test_first_invalid_argument_wins():
    with pytest.raises(asm.InvalidRegister) as e:
        asm.assemble('addi x32, x2, 4096')
    assert e.value.position == 1
    assert e.value.actual == 'x32'


def test_error_hierarchy():
    for cls in [asm.UnknownMnemonic, asm.ArityMismatch, asm.InvalidArgument, asm.PseudoExpansionError]:
        assert issubclass(cls, asm.AssemblerError)
    for cls in [asm.InvalidRegister, asm.InvalidImmediate, asm.MalformedMemoryOperand, asm.InvalidFenceSet]:
        assert issubclass(cls, asm.InvalidArgument)


def test_error_str():
    with pytest.raises(asm.AssemblerError) as e:
        asm.assemble('add x1, x2')
    assert str(e.value) == 'add x1, x2\nAssemblerError: Too few arguments to instruction.\nExpected: 3\nActual:   2'


def test_error_str_overloaded():
    with pytest.raises(asm.ArityMismatch) as e:
        asm.assemble('jalr x1, x2')
    assert str(e.value).endswith('Expected: 1 or 3\nActual:   2')


def test_tables_are_read_only():
    with pytest.raises(TypeError):
        asm.INSTRUCTIONS['nop2'] = asm.INSTRUCTIONS['addi']
    with pytest.raises(TypeError):
        asm.PSEUDO_INSTRUCTIONS['nop'] = None


def test_pseudo_base_references():
    for pseudo in asm.PSEUDO_INSTRUCTIONS.values():
        assert pseudo.base is asm.INSTRUCTIONS[pseudo.base.name]


def test_expansion_arity_checked():
    bad = asm.PseudoInstruction('bad', (), asm.INSTRUCTIONS['addi'], lambda: (0, 0))
    with pytest.raises(asm.PseudoExpansionError) as e:
        asm.expand_pseudo_instruction('bad', bad, ())
    assert e.value.expected == 3
    assert e.value.actual == 2


def test_build_rejects_bad_expansion():
    expansions = [('bad', (asm.REGISTER,), 'addi', lambda rd: (rd, 0))]
    with pytest.raises(RuntimeError):
        asm.build_pseudo_instructions(expansions, asm.INSTRUCTIONS)


def test_build_rejects_wrong_encoder():
    inst = asm.Instruction('bad', asm.RRR, asm.ADD, asm.r_text, asm.B)
    with pytest.raises(RuntimeError):
        asm.build_instructions([inst])


def test_build_rejects_unknown_format():
    inst = asm.Instruction('bad', asm.RRR, asm.ADD, asm.r_text, 'R4')
    with pytest.raises(RuntimeError):
        asm.build_instructions([inst])


def test_assembled_fields():
    result = asm.assemble('add x1, x2, x1')
    assert result.fields == asm.split_fields(0x001100b3, asm.R)


def test_assemble_logs(caplog):
    with caplog.at_level('DEBUG', logger='anvil.asm'):
        asm.assemble('nop')
    assert '0x00000013' in caplog.text
