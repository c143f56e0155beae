import argparse
import atexit
import logging
import os
import readline
import sys

from rich import box
from rich.columns import Columns
from rich.console import Console
from rich.table import Table

from anvil import asm
from anvil import port as anvil_port

# Python Cookbook: Section 13.12
log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

HISTORY_PATH = os.path.join(os.path.expanduser('~'), '.anvil_history')
HISTORY_LENGTH = 1000
PROMPT = '> '


def assembly_table(line, result):
    table = Table(box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column('Mnemonic', style='cyan', no_wrap=True)
    table.add_column('Hexadecimal', style='magenta')
    table.add_column('Binary', style='green')
    table.add_row(line, '0x{:08x}'.format(result.code), '{:032b}'.format(result.code))
    return table


def fields_table(result):
    table = Table(title='{}-type'.format(result.format), box=box.MINIMAL_DOUBLE_HEAD)
    row = []
    for header, bits in result.fields:
        table.add_column(header, justify='center')
        row.append(bits)
    table.add_row(*row)
    return table


def registers_table(registers, start, stop):
    table = Table(box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column('Name', style='cyan')
    table.add_column('ABI', style='magenta')
    table.add_column('Value', style='green', justify='right')
    for index in range(start, stop):
        table.add_row(asm.register_name(index), asm.abi_name(index), '0x{:08X}'.format(registers[index]))
    return table


def print_registers(console, registers):
    half = len(registers) // 2
    left = registers_table(registers, 0, half)
    right = registers_table(registers, half, len(registers))
    console.print(Columns([left, right]))


def evaluate_line(console, line, port=None):
    """
    Assemble one line, print it, and run it on the processor if connected.

    Returns the register file read back, or None when nothing was sent.
    Assembler errors are printed and swallowed so the session continues,
    port errors propagate to the caller.
    """
    try:
        result = asm.assemble(line)
    except asm.AssemblerError as e:
        console.print(str(e), style='bold red', markup=False, highlight=False)
        return None

    if result is None:
        return None

    console.print(assembly_table(line.strip(), result))
    console.print(fields_table(result))
    if port is None:
        return None

    registers = anvil_port.evaluate(port, result.code)
    print_registers(console, registers)
    return registers


def load_history(path=HISTORY_PATH):
    try:
        readline.read_history_file(path)
        readline.set_history_length(HISTORY_LENGTH)
    except FileNotFoundError:
        pass

    atexit.register(readline.write_history_file, path)


def repl(console, port=None):
    load_history()

    while True:
        try:
            line = input(PROMPT)
        except (EOFError, KeyboardInterrupt):
            console.print()
            break

        # Ctrl-C while waiting on the processor abandons that line only
        try:
            evaluate_line(console, line, port=port)
        except KeyboardInterrupt:
            console.print('interrupted', style='bold red')


def cli_main(argv=None):
    parser = argparse.ArgumentParser(
        description='Assemble RISC-V instructions one line at a time and run them on a processor',
        prog='anvil',
    )
    parser.add_argument('address', type=str, nargs='?', help='serial device of the processor (e.g. /dev/ttyUSB0)')
    parser.add_argument('-t', '--tcp', type=int, metavar='PORT', help='connect to a simulator listening on localhost')
    parser.add_argument('-b', '--baud', type=int, default=anvil_port.DEFAULT_BAUDRATE,
        help='serial baud rate (default {})'.format(anvil_port.DEFAULT_BAUDRATE))
    parser.add_argument('--timeout', type=float, default=anvil_port.DEFAULT_TIMEOUT,
        help='seconds to wait for the register file (default {})'.format(anvil_port.DEFAULT_TIMEOUT))
    parser.add_argument('-a', '--assemble-only', action='store_true', help='assemble without a processor attached')
    parser.add_argument('-l', '--list-ports', action='store_true', help='list available serial ports and exit')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='verbose output (repeat for debug)')
    parser.add_argument('--version', action='store_true', help='print version and exit')
    args = parser.parse_args(argv)

    if args.version:
        from anvil import __version__
        version = 'anvil {}'.format(__version__)
        raise SystemExit(version)

    log_fmt = '%(message)s'
    if args.verbose:
        level = logging.DEBUG if args.verbose > 1 else logging.INFO
        logging.basicConfig(format=log_fmt, level=level, stream=sys.stdout)

    if args.list_ports or (not args.assemble_only and args.address is None and args.tcp is None):
        ports = anvil_port.list_ports()
        if len(ports) == 0:
            raise SystemExit('no serial ports found (use --tcp PORT or --assemble-only)')
        print('available serial ports:')
        for name in ports:
            print('  {}'.format(name))
        return

    console = Console()
    if args.assemble_only:
        repl(console)
        return

    try:
        link = anvil_port.open_port(args.address, tcp_port=args.tcp, baudrate=args.baud, timeout=args.timeout)
        log.info('connected to {}'.format(link.port))
        with link:
            repl(console, port=link)
    except anvil_port.PortError as e:
        raise SystemExit(e)


if __name__ == '__main__':
    cli_main()
