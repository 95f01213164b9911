#!/usr/bin/env python3
"""
cm to C Converter

Translates a cm template (literal text with embedded ``<?c ... ?>`` code
regions and ``@...@`` print regions) into a C program whose ``main``
reproduces the text.
"""

import argparse
import io
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Mapping, Optional

# =============================================================================
# Delimiters and Dialects
# =============================================================================

CODE_OPEN = b"<?c"
CODE_CLOSE = b"?>"
CODE_OPEN_LEN = 4  # "<?c" plus the mandatory space or newline
CODE_CLOSE_LEN = 2
NEWLINE = 0x0A
SPACE = 0x20

# Shortest template the scanner accepts
MIN_INPUT_LEN = 4

HEADER_ENV_VAR = "CM_DEFAULT_HEADER_NAME"


class Region(Enum):
    """Lexical region the scanner is currently in."""
    LITERAL = "literal"
    CODE = "code"
    PRINT = "print"


@dataclass(frozen=True)
class Dialect:
    """Template dialect.

    The 3-region dialect has a single-byte print toggle that switches
    between literal text and a printf argument list. The 2-region dialect
    has no toggle; only literal text and code exist.
    """
    print_toggle: Optional[int] = ord("@")

    @property
    def has_print_region(self) -> bool:
        return self.print_toggle is not None


THREE_REGION = Dialect()
TWO_REGION = Dialect(print_toggle=None)

# =============================================================================
# Byte Classifier
# =============================================================================

# Bytes that may appear unescaped inside a C string literal
PLAIN_CHARS = frozenset(
    b"abcdefghijklmnopqrstuvwxyz"
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    b"0123456789"
    b" !#%&()*+,-./:;<=>[]^_{|}~"
)

HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


def is_code_open(buf: bytes, pos: int) -> bool:
    """Check for ``<?c`` followed by a space or newline at ``pos``.

    The caller guarantees at least four bytes remain.
    """
    return (buf[pos:pos + 3] == CODE_OPEN and
            buf[pos + 3] in (SPACE, NEWLINE))


def is_code_close(buf: bytes, pos: int) -> bool:
    """Check for ``?>`` at ``pos``. The caller guarantees two bytes remain."""
    return buf[pos:pos + 2] == CODE_CLOSE


def is_plain_char(byte: int) -> bool:
    return byte in PLAIN_CHARS

# =============================================================================
# Literal Escaper
# =============================================================================

SIMPLE_ESCAPES = {
    ord('"'): '\\"',
    ord("'"): "\\'",
    ord("?"): "\\?",
    ord("\\"): "\\\\",
    0x07: "\\a",
    0x08: "\\b",
    0x0C: "\\f",
    0x0A: "\\n",
    0x0D: "\\r",
    0x09: "\\t",
    0x0B: "\\v",
}


def escape_byte(byte: int) -> str:
    """Return the C string-literal form of a single byte.

    Plain bytes come back unchanged, known control and quote characters use
    their one-letter escape, everything else becomes an unpadded ``\\x``
    escape (0x07 -> ``\\a``, 0x01 -> ``\\x1``, 0xc3 -> ``\\xc3``).
    """
    if is_plain_char(byte):
        return chr(byte)
    simple = SIMPLE_ESCAPES.get(byte)
    if simple is not None:
        return simple
    return f"\\x{byte:x}"

# =============================================================================
# C Code Emitter
# =============================================================================

class CEmitter:
    """Generates a C program from a cm template in a single pass.

    Output is streamed to a binary sink as the input is scanned; nothing
    already written is revisited. Code and print regions are copied byte for
    byte, literal text is escaped into ``printf("...")`` statements split at
    every newline.
    """

    def __init__(self, header_name: str, dialect: Dialect = THREE_REGION):
        self.header_name = header_name
        self.dialect = dialect
        self.sink: Optional[BinaryIO] = None
        self.region = Region.LITERAL
        self.resume_region = Region.LITERAL  # Region to return to after "?>"
        self.after_hex_escape = False

    # =========================================================================
    # Emit Infrastructure
    # =========================================================================

    def _emit(self, text: str):
        self.sink.write(text.encode("utf-8"))

    def _emit_raw(self, buf: bytes, pos: int):
        self.sink.write(buf[pos:pos + 1])

    def _open_literal(self):
        self._emit('printf("')
        self.after_hex_escape = False

    def _close_literal(self):
        self._emit('");\n')

    def _open_print(self):
        self._emit("printf(")

    def _close_print(self):
        self._emit(");\n")

    # =========================================================================
    # Program Wrapper
    # =========================================================================

    def _emit_prologue(self):
        self._emit(f'#include "{self.header_name}"\n')
        self._emit("int main(int argc, char** argv) {\n")

    def _emit_epilogue(self):
        self._emit("return 0;\n}\n")

    # =========================================================================
    # Region Scanner
    # =========================================================================

    def generate(self, buf: bytes, sink: BinaryIO):
        """Translate ``buf`` and write the C program to ``sink``.

        Args:
            buf: The whole template, at least MIN_INPUT_LEN bytes
            sink: Binary stream receiving the generated source
        """
        if len(buf) < MIN_INPUT_LEN:
            raise ValueError(
                f"Input is {len(buf)} bytes long, need at least {MIN_INPUT_LEN}")

        self.sink = sink
        self.region = Region.LITERAL
        self.resume_region = Region.LITERAL
        self.after_hex_escape = False

        self._emit_prologue()
        pos = self._enter(buf)
        while pos < len(buf):
            pos = self._step(buf, pos)
        self._finish()
        self._emit_epilogue()

    def _enter(self, buf: bytes) -> int:
        """Pick the initial region and return the starting cursor."""
        if is_code_open(buf, 0):
            self.region = Region.CODE
            return CODE_OPEN_LEN
        if self.dialect.has_print_region and buf[0] == self.dialect.print_toggle:
            self.region = Region.PRINT
            self._open_print()
            return 1
        self._open_literal()
        return 0

    def _step(self, buf: bytes, pos: int) -> int:
        """Handle the byte(s) at ``pos`` and return the advanced cursor."""
        byte = buf[pos]
        remaining = len(buf) - pos
        region = self.region

        if region is not Region.CODE and byte == self.dialect.print_toggle:
            if region is Region.LITERAL:
                self._close_literal()
                self._open_print()
                self.region = Region.PRINT
            else:
                self._close_print()
                self._open_literal()
                self.region = Region.LITERAL
            return pos + 1

        if (region is not Region.CODE and remaining >= CODE_OPEN_LEN
                and is_code_open(buf, pos)):
            # Code opened inside a print region becomes part of its arguments
            if region is Region.LITERAL:
                self._close_literal()
            self.resume_region = region
            self.region = Region.CODE
            return pos + CODE_OPEN_LEN

        if (region is Region.CODE and remaining >= CODE_CLOSE_LEN
                and is_code_close(buf, pos)):
            pos += CODE_CLOSE_LEN
            if pos < len(buf) and buf[pos] == NEWLINE:
                pos += 1
            self.region = self.resume_region
            if self.region is Region.LITERAL:
                self._emit("\n")
                self._open_literal()
            return pos

        if region is not Region.LITERAL:
            self._emit_raw(buf, pos)
            return pos + 1

        if byte == NEWLINE:
            self._emit('\\n"\n"')
            self.after_hex_escape = False
        elif not is_plain_char(byte):
            escaped = escape_byte(byte)
            self._emit(escaped)
            self.after_hex_escape = escaped.startswith("\\x")
        else:
            if self.after_hex_escape and byte in HEX_DIGITS:
                # End the literal so the digit is not read as part of the escape
                self._emit('""')
            if byte == ord("%"):
                self._emit("%%")
            else:
                self._emit_raw(buf, pos)
            self.after_hex_escape = False
        return pos + 1

    def _finish(self):
        """Close whatever statement is still open at end of input."""
        if self.region is Region.LITERAL:
            self._close_literal()
        elif self.region is Region.PRINT:
            self._close_print()
        # An unterminated code region is passed through as is


def translate(buf: bytes, header_name: str, dialect: Dialect = THREE_REGION) -> bytes:
    """Translate a template held in memory and return the C source."""
    sink = io.BytesIO()
    CEmitter(header_name, dialect).generate(buf, sink)
    return sink.getvalue()

# =============================================================================
# Header Bundle
# =============================================================================

C_HEADERS = """\
/* include all libc headers */
#include <errno.h>
#include <stddef.h>
#include <assert.h>
#include <ctype.h>
#include <locale.h>
#include <math.h>
#include <setjmp.h>
#include <signal.h>
#include <stdarg.h>
#include <stdio.h>
#include <stdlib.h>
#include <string.h>
#include <time.h>
#include <float.h>
#include <limits.h>
#if (defined(__STDC_VERSION__) && (__STDC_VERSION__ >= 199901L))
#include <fenv.h>
#include <inttypes.h>
#include <iso646.h>
#include <stdbool.h>
#include <stdint.h>
#include <tgmath.h>
#include <wchar.h>
#include <wctype.h>
#if !defined(__STDC_NO_COMPLEX__)
#include <complex.h>
#endif
#if (__STDC_VERSION__ >= 201112L)
#include <stdalign.h>
#include <stdnoreturn.h>
#include <uchar.h>
#if !defined(__STDC_NO_ATOMICS__)
#include <stdatomic.h>
#endif
#if !defined(__STDC_NO_THREADS__)
#include <threads.h>
#endif
#if (__STDC_VERSION__ >= 202311L)
#include <stdbit.h>
#include <stdckdint.h>
#endif
#endif
#endif
"""

UNIX_HEADERS = """\
/* Include all non-extension posix headers on unix systems */
#if defined(__unix__)
#define _POSIX_C_SOURCE 202405L
#include <unistd.h>
#if (defined(_POSIX_VERSION) && (_POSIX_VERSION >= 200809L))
#include <aio.h>
#include <arpa/inet.h>
#include <cpio.h>
#include <dirent.h>
#include <dlfcn.h>
#include <fcntl.h>
#include <fnmatch.h>
#include <glob.h>
#include <grp.h>
#include <iconv.h>
#include <langinfo.h>
#include <monetary.h>
#include <net/if.h>
#include <netdb.h>
#include <netinet/in.h>
#include <netinet/tcp.h>
#include <nl_types.h>
#include <poll.h>
#include <pthread.h>
#include <pwd.h>
#include <regex.h>
#include <sched.h>
#include <semaphore.h>
#include <strings.h>
#include <sys/mman.h>
#include <sys/select.h>
#include <sys/socket.h>
#include <sys/stat.h>
#include <sys/statvfs.h>
#include <sys/times.h>
#include <sys/types.h>
#include <sys/un.h>
#include <sys/utsname.h>
#include <sys/wait.h>
#include <tar.h>
#include <termios.h>
#include <wordexp.h>
#if (_POSIX_VERSION >= 202405L)
#include <endian.h>
#include <libintl.h>
#endif
#endif
#endif
"""


def render_header() -> str:
    """Return the header bundle: POSIX headers first, then libc."""
    return UNIX_HEADERS + "\n\n" + C_HEADERS


def create_header(path) -> bool:
    """Write the header bundle to ``path`` unless it already exists.

    Returns True if the file was written.
    """
    path = Path(path)
    if path.exists():
        return False
    with open(path, "w", encoding="ascii", newline="\n") as f:
        f.write(render_header())
    return True

# =============================================================================
# File Handling
# =============================================================================

def default_header_name(input_name: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Header used when none is given: $CM_DEFAULT_HEADER_NAME or <input>.h."""
    if environ is None:
        environ = os.environ
    return environ.get(HEADER_ENV_VAR) or f"{input_name}.h"


def default_output_name(input_name: str) -> str:
    return f"{input_name}.out.c"


def read_input(path) -> bytes:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return path.read_bytes()


def write_output(path, buf: bytes, header_name: str, dialect: Dialect = THREE_REGION):
    """Translate ``buf`` into a new file at ``path``.

    Never overwrites: an existing destination raises FileExistsError.
    """
    if len(buf) < MIN_INPUT_LEN:
        raise ValueError(
            f"Input is {len(buf)} bytes long, need at least {MIN_INPUT_LEN}")
    path = Path(path)
    if path.exists():
        raise FileExistsError(f"Output file already exists: {path}")
    with open(path, "xb") as f:
        CEmitter(header_name, dialect).generate(buf, f)

# =============================================================================
# Main
# =============================================================================

def _toggle_byte(value: str) -> int:
    """argparse type for --toggle: a single ASCII character."""
    if len(value) != 1 or not value.isascii():
        raise argparse.ArgumentTypeError(f"toggle must be a single ASCII character, got {value!r}")
    byte = ord(value)
    if byte == NEWLINE or byte in CODE_OPEN + CODE_CLOSE:
        raise argparse.ArgumentTypeError(f"toggle {value!r} clashes with a code delimiter")
    return byte


def build_parser() -> argparse.ArgumentParser:
    # -h names the header, so argparse's own -h/--help is replaced by --help
    parser = argparse.ArgumentParser(
        description="Convert a cm template to a C program",
        usage="%(prog)s [-o outputname] [-h headerfilename] filename",
        epilog=f"Use the environment-variable {HEADER_ENV_VAR} to set a default header; "
               "otherwise, (input).h will be used.",
        add_help=False,
    )
    parser.add_argument(
        "--output", "-o",
        metavar="outputname",
        help="Output file (default: <filename>.out.c)"
    )
    parser.add_argument(
        "--header", "-h",
        metavar="headerfilename",
        help="Header to #include; created with all standard headers if missing"
    )
    parser.add_argument(
        "--two-region",
        action="store_true",
        help="Disable print regions (only literal text and <?c ... ?> code)"
    )
    parser.add_argument(
        "--toggle",
        type=_toggle_byte,
        default=ord("@"),
        metavar="CHAR",
        help="Character that opens and closes a print region (default: @)"
    )
    parser.add_argument(
        "--help",
        action="store_true",
        help="Show this help message and exit"
    )
    parser.add_argument(
        "filename",
        nargs="?",
        help="The template to convert"
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.help or args.filename is None:
        parser.print_help()
        sys.exit(0)

    input_name = args.filename
    header = args.header or default_header_name(input_name)
    output = args.output or default_output_name(input_name)
    dialect = TWO_REGION if args.two_region else Dialect(print_toggle=args.toggle)

    print(f"Input from file: {input_name}")
    print(f"Output into file: {output}")
    print(f"Used header: {header}")

    try:
        create_header(header)
        buf = read_input(input_name)
        write_output(output, buf, header, dialect)
    except (FileNotFoundError, FileExistsError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: I/O failure: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
