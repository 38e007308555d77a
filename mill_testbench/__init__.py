# mill_testbench package

"""
This package contains the modules of the LXD test bench for
infrastructure provisioning scripts.

Modules include:
    - cli: command-line entry point
    - harness: run configuration and the guaranteed-disposition run
    - cycle: the attempt/retry state machine
    - lifecycle: create, snapshot, restore, diff and delete the test container
    - executor: run the script under test with a wall-clock bound
    - validator: success-marker checks on captured output
    - disposition: destroy or preserve the container after a run
    - runtime: container runtime contract and the LXD binding
    - retry: bounded retry with a fixed delay
    - report: diff report and run summary files
    - log: run log and JSONL events
"""
