import logging
import struct

import serial
from serial.tools import list_ports as serial_list_ports

# Python Cookbook: Section 13.12
log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

REGISTER_COUNT = 32
DEFAULT_BAUDRATE = 9600
DEFAULT_TIMEOUT = 5.0


class PortError(Exception):
    pass


def list_ports():
    return sorted(port.device for port in serial_list_ports.comports())


def open_port(address=None, tcp_port=None, baudrate=DEFAULT_BAUDRATE, timeout=DEFAULT_TIMEOUT):
    """
    Open the link to the processor.

    A tcp_port connects to a simulated processor listening on localhost,
    otherwise address names a serial device such as /dev/ttyUSB0.
    """
    try:
        if tcp_port is not None:
            url = 'socket://localhost:{}'.format(tcp_port)
            log.info('connecting to simulator at {}'.format(url))
            return serial.serial_for_url(url, timeout=timeout)
        if address is None:
            raise PortError('either a serial address or a TCP port is required')
        log.info('opening serial port {} at {} baud'.format(address, baudrate))
        return serial.Serial(address, baudrate=baudrate, timeout=timeout)
    except serial.SerialException as e:
        raise PortError('failed to open port: {}'.format(e)) from e


def read_exactly(port, size):
    data = b''
    while len(data) < size:
        chunk = port.read(size - len(data))
        if len(chunk) == 0:
            raise PortError('read timed out after {} of {} bytes'.format(len(data), size))
        data += chunk
    return data


def evaluate(port, code, register_count=REGISTER_COUNT):
    """Send one instruction word and return the register file that comes back."""
    data = struct.pack('<I', code)
    try:
        port.write(data)
        port.flush()
        log.debug('sent 0x{:08x}'.format(code))
        reply = read_exactly(port, register_count * 4)
    except serial.SerialException as e:
        raise PortError('port failure: {}'.format(e)) from e

    registers = struct.unpack('<{}I'.format(register_count), reply)
    log.debug('received {} registers'.format(len(registers)))
    return registers
