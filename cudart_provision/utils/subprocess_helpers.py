import collections
import logging
import pathlib
import subprocess
import typing

TAIL: typing.Final[int] = 50
"""
Number of trailing output lines attached to :py:class:`subprocess.CalledProcessError` when `stderr` is merged.
"""

def popen_stream(*,
    args : typing.Sequence[str | pathlib.Path],
    merge_stderr : bool = False,
    **kwargs,
) -> typing.Generator[str, None, None]:
    """
    Yield lines from a :py:class:`subprocess.Popen` lazily, with robust error handling and resource cleanup.

    :param args: Command to run.
    :param merge_stderr: Redirect `stderr` into `stdout`, so that warnings are yielded in order with the rest of the output.
    :param kwargs: Additional arguments to pass to :py:class:`subprocess.Popen`.

    1. Launch a subprocess with `stdout` (and `stderr`) captured as text streams.
    2. Lazily yield each line from `stdout` as it becomes available.
    3. After `stdout` is exhausted, wait for the process to finish.
    4. If the process exits with a nonzero return code, raise
       :py:class:`subprocess.CalledProcessError` with captured `stderr`
       (or the last :py:data:`TAIL` lines of output if `merge_stderr` is set).
    5. Guarantee resource cleanup:

        a. If the process hasn't finished, it is terminated.
        b. If termination fails (within 2 seconds), the process is forcibly killed.
    """
    tail : collections.deque[str] = collections.deque(maxlen = TAIL)

    with subprocess.Popen(
        args = args,
        stdout = subprocess.PIPE,
        stderr = subprocess.STDOUT if merge_stderr else subprocess.PIPE,
        text = True,
        **kwargs,
    ) as process:
        try:
            assert process.stdout is not None

            for line in process.stdout:
                if merge_stderr:
                    tail.append(line)
                yield line

            if (returncode := process.wait()) != 0:
                if merge_stderr:
                    stderr = ''.join(tail)
                else:
                    assert process.stderr is not None
                    stderr = process.stderr.read()
                raise subprocess.CalledProcessError(
                    returncode = returncode,
                    cmd = args,
                    stderr = stderr,
                )

        finally:
            if process.poll() is None:
                logging.warning(f'Terminating {process!r}.')
                process.terminate()
                try:
                    process.wait(timeout = 2)
                except (subprocess.TimeoutExpired, KeyboardInterrupt):
                    logging.warning(f'Killing process {process!r}.')
                    process.kill()
                    process.wait()

def run_logged(*,
    args : typing.Sequence[str | pathlib.Path],
    level : int = logging.INFO,
    **kwargs,
) -> None:
    """
    Run `args` to completion, forwarding each line of its output (`stdout` and `stderr`) to the log.

    Raises :py:class:`subprocess.CalledProcessError` as :py:func:`popen_stream` does.
    """
    logging.info(f"Running {' '.join(map(str, args))}.")
    for line in popen_stream(args = args, merge_stderr = True, **kwargs):
        logging.log(level, line.rstrip('\n'))
