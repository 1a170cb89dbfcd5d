"""
client.py - Call surface for deployed registries

A deployed LoanRegistry is addressed by (contract address, contract name).
Calls name a function and pass an ordered list of typed values:

    client = Client()
    client.deploy(DEPLOYER, "micro-lending")
    client.call_public(DEPLOYER, "micro-lending", "request-loan",
                       [uint(1000), uint(500), uint(144), string_ascii("Business expansion")],
                       sender=BORROWER)

Public (mutating) calls and read-only calls both return a CallResult. A
failed lending rule is a normal result with success=False and an ErrorCode;
CallResult.unwrap() raises CallFailed for callers who prefer exceptions.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from .config import RegistryConfig
from .core import ErrorCode, LedgerError
from .registry import LoanRegistry, DEFAULT_CONTRACT_NAME
from .units.loan import LoanRecord
from .values import Value, UInt, Principal, StringAscii, uint, principal, string_ascii


# =============================================================================
# RESULTS
# =============================================================================

class CallFailed(LedgerError):
    """Raised by CallResult.unwrap() for a failed call."""

    def __init__(self, code: ErrorCode, message: str = ""):
        super().__init__(f"{code.value}: {message}" if message else code.value)
        self.code = code


@dataclass(frozen=True, slots=True)
class CallResult:
    """
    Outcome of a contract call.

    Attributes:
        success: True if the call was applied (public) or answered (read-only)
        value: Typed return value on success
        error: Reason code on failure
        message: Human-readable failure detail
    """
    success: bool
    value: Any = None
    error: Optional[ErrorCode] = None
    message: str = ""

    @classmethod
    def ok(cls, value: Any = None) -> CallResult:
        return cls(success=True, value=value)

    @classmethod
    def err(cls, code: ErrorCode, message: str = "") -> CallResult:
        return cls(success=False, error=code, message=message)

    @property
    def data(self) -> Any:
        """Alias for value, the name read-only responses use."""
        return self.value

    def unwrap(self) -> Any:
        if not self.success:
            raise CallFailed(self.error, self.message)
        return self.value


# =============================================================================
# FUNCTION TABLE
# =============================================================================

Handler = Callable[[LoanRegistry, Optional[str], Tuple[Any, ...]], Any]


@dataclass(frozen=True, slots=True)
class FunctionSpec:
    """Signature and implementation of one callable contract function."""
    name: str
    params: Tuple[Type[Value], ...]
    read_only: bool
    handler: Handler


def _loan_values(record: LoanRecord) -> Dict[str, Any]:
    def opt_uint(v: Optional[int]) -> Optional[UInt]:
        return uint(int(v)) if v is not None else None

    return {
        'id': uint(record.loan_id),
        'borrower': principal(record.borrower),
        'lender': principal(record.lender) if record.lender is not None else None,
        'amount': uint(record.amount),
        'interestRate': uint(record.interest_rate),
        'duration': uint(record.duration_blocks),
        'purpose': string_ascii(record.purpose),
        'status': string_ascii(record.status.value),
        'creditScore': uint(record.credit_score),
        'requestedAt': uint(record.requested_at),
        'fundedAt': opt_uint(record.funded_at),
        'repaidAt': opt_uint(record.repaid_at),
        'repaymentAmount': opt_uint(record.repayment_amount),
    }


def _balance_value(amount: Decimal) -> UInt:
    return uint(int(amount))


_FUNCTIONS: Dict[str, FunctionSpec] = {fn.name: fn for fn in (
    FunctionSpec(
        'request-loan', (UInt, UInt, UInt, StringAscii), False,
        lambda reg, sender, a: uint(reg.request_loan(sender, a[0], a[1], a[2], a[3])),
    ),
    FunctionSpec(
        'fund-loan', (UInt,), False,
        lambda reg, sender, a: reg.fund_loan(a[0], sender),
    ),
    FunctionSpec(
        'repay-loan', (UInt,), False,
        lambda reg, sender, a: reg.repay_loan(a[0], sender),
    ),
    FunctionSpec(
        'update-credit-score', (Principal, UInt), False,
        lambda reg, sender, a: reg.update_credit_score(a[0], a[1], sender),
    ),
    FunctionSpec(
        'deposit', (UInt,), False,
        lambda reg, sender, a: reg.deposit(sender, a[0]),
    ),
    FunctionSpec(
        'withdraw', (UInt,), False,
        lambda reg, sender, a: reg.withdraw(sender, a[0]),
    ),
    FunctionSpec(
        'get-loan', (UInt,), True,
        lambda reg, sender, a: _loan_values(reg.get_loan(a[0])),
    ),
    FunctionSpec(
        'get-credit-score', (Principal,), True,
        lambda reg, sender, a: {'score': uint(reg.get_credit_score(a[0]))},
    ),
    FunctionSpec(
        'get-user-balance', (Principal,), True,
        lambda reg, sender, a: {'balance': _balance_value(reg.get_user_balance(a[0]))},
    ),
    FunctionSpec(
        'get-loan-count', (), True,
        lambda reg, sender, a: uint(reg.get_loan_count()),
    ),
    FunctionSpec(
        'get-repayment-amount', (UInt,), True,
        lambda reg, sender, a: uint(int(reg.quote_repayment(a[0]))),
    ),
)}


def list_functions(read_only: Optional[bool] = None) -> List[str]:
    """Names of the callable functions, optionally only public or read-only ones."""
    return sorted(
        name for name, fn in _FUNCTIONS.items()
        if read_only is None or fn.read_only == read_only
    )


# =============================================================================
# CONTRACT REGISTRY AND CLIENT
# =============================================================================

@dataclass
class ContractRegistry:
    """Deployed registries keyed by (contract address, contract name)."""
    contracts: Dict[Tuple[str, str], LoanRegistry] = field(default_factory=dict)

    def register(self, contract_address: str, contract_name: str, registry: LoanRegistry) -> None:
        key = (contract_address, contract_name)
        if key in self.contracts:
            raise ValueError(f"Contract {contract_address}.{contract_name} already deployed")
        self.contracts[key] = registry

    def resolve(self, contract_address: str, contract_name: str) -> Optional[LoanRegistry]:
        return self.contracts.get((contract_address, contract_name))


class Client:
    """
    Submits calls to deployed registries.

    Example:
        client = Client()
        client.deploy(DEPLOYER, "micro-lending")
        result = client.call_read_only(DEPLOYER, "micro-lending", "get-user-balance",
                                       [principal(BORROWER)])
        result.data  # {'balance': u0}
    """

    def __init__(self, contracts: Optional[ContractRegistry] = None, verbose: bool = False):
        self.contracts = contracts or ContractRegistry()
        self.verbose = verbose

    def deploy(
        self,
        deployer: str,
        contract_name: str = DEFAULT_CONTRACT_NAME,
        initial_block: int = 0,
        **config_overrides: Any,
    ) -> LoanRegistry:
        """
        Deploy a new registry owned by deployer at (deployer, contract_name).

        Keyword arguments override RegistryConfig defaults.
        """
        principal(deployer)
        config = RegistryConfig(owner=deployer, **config_overrides)
        registry = LoanRegistry(config, name=contract_name, initial_block=initial_block,
                                verbose=self.verbose)
        self.contracts.register(deployer, contract_name, registry)
        return registry

    def call_public(
        self,
        contract_address: str,
        contract_name: str,
        function_name: str,
        args: Sequence[Value],
        sender: str,
    ) -> CallResult:
        """Submit a state-mutating call on behalf of sender."""
        try:
            principal(sender)
        except ValueError as e:
            return CallResult.err(ErrorCode.BAD_ARGUMENTS, str(e))
        return self._call(contract_address, contract_name, function_name, args, sender, read_only=False)

    def call_read_only(
        self,
        contract_address: str,
        contract_name: str,
        function_name: str,
        args: Sequence[Value],
        sender: Optional[str] = None,
    ) -> CallResult:
        """Evaluate a read-only function. Never mutates state."""
        return self._call(contract_address, contract_name, function_name, args, sender, read_only=True)

    def _call(
        self,
        contract_address: str,
        contract_name: str,
        function_name: str,
        args: Sequence[Value],
        sender: Optional[str],
        read_only: bool,
    ) -> CallResult:
        registry = self.contracts.resolve(contract_address, contract_name)
        if registry is None:
            return CallResult.err(
                ErrorCode.UNKNOWN_CONTRACT, f"{contract_address}.{contract_name}"
            )

        fn = _FUNCTIONS.get(function_name)
        if fn is None or fn.read_only != read_only:
            kind = "read-only" if read_only else "public"
            return CallResult.err(ErrorCode.UNKNOWN_FUNCTION, f"no {kind} function {function_name}")

        error = _check_args(fn, args)
        if error:
            return CallResult.err(ErrorCode.BAD_ARGUMENTS, error)

        try:
            value = fn.handler(registry, sender, tuple(a.to_python() for a in args))
        except LedgerError as e:
            if self.verbose:
                print(f"[{contract_name}] {function_name} failed: {e.code.value} {e}")
            return CallResult.err(e.code, str(e))
        except ValueError as e:
            return CallResult.err(ErrorCode.BAD_ARGUMENTS, str(e))

        return CallResult.ok(value)


def _check_args(fn: FunctionSpec, args: Sequence[Value]) -> str:
    if len(args) != len(fn.params):
        return f"{fn.name} expects {len(fn.params)} arguments, got {len(args)}"
    for i, (arg, expected) in enumerate(zip(args, fn.params)):
        if not isinstance(arg, expected):
            return f"{fn.name} argument {i} must be {expected.__name__}, got {type(arg).__name__}"
    return ""
