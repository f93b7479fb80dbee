import argparse
import asyncio
import getpass
import sys

from pydantic import ValidationError

from config.settings import DOMAIN_USER
from core.logger import log_event
from core.provisioner import Provisioner
from schemas.provision_schema import DomainCredential, ProvisioningRequest


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create a VM on each hypervisor host, snapshot it and join it to a domain.",
    )
    parser.add_argument("--vm-name", help="VM name")
    parser.add_argument("--host", dest="hosts", action="append", help="Target host (repeatable)")
    parser.add_argument("--disk-size-gb", type=int, help="Virtual disk size in GiB")
    parser.add_argument("--memory-mb", type=int, help="RAM in MiB")
    parser.add_argument("--vcpus", type=int, help="Number of virtual CPUs")
    parser.add_argument("--switch", dest="switch_name", help="Virtual switch (libvirt network)")
    parser.add_argument("--iso", dest="iso_path", help="Install media path on the host")
    parser.add_argument("--generation", type=int, choices=[1, 2], help="VM generation")
    parser.add_argument(
        "--autostart",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Start the VM with the host if it was running",
    )
    parser.add_argument("--domain", dest="domain_name", help="Directory domain to join")
    parser.add_argument("--domain-user", default=DOMAIN_USER, help="Domain account used for the join")
    parser.add_argument("--notes", help="Free-text notes stored on the VM")
    parser.add_argument("--wait-seconds", type=float, help="Seconds to wait after start before the snapshot")
    parser.add_argument("--snapshot-name", help="Snapshot name (default: <vm-name>-snapshot)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = vars(args).copy()
    overrides.pop("domain_user")
    # validate everything except the password before prompting for it
    try:
        request = ProvisioningRequest.from_settings(
            DomainCredential(username=args.domain_user, password=""),
            **overrides,
        )
    except ValidationError as e:
        parser.error(str(e))

    password = getpass.getpass(f"Password for {args.domain_user}: ")
    credential = DomainCredential(username=args.domain_user, password=password)
    request = request.model_copy(update={"domain_credential": credential})

    outcomes = asyncio.run(Provisioner().run(request))

    failed = 0
    for outcome in outcomes:
        if outcome.success:
            print(f"[{outcome.host}] {outcome.vm_name}: provisioned (log: {outcome.log_path})")
        else:
            failed += 1
            print(
                f"[{outcome.host}] {outcome.vm_name}: FAILED at {outcome.failed_step}: {outcome.error}",
                file=sys.stderr,
            )

    log_event(f"[cli] Run finished: {len(outcomes) - failed} succeeded, {failed} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
