"""
Account Hierarchy

Assembles flat chart-of-accounts rows into a parent/child tree. Accounts are
held in an arena keyed by their own ``id`` and linked by the edge
``child.parent_id -> parent.id``. Parent chains are checked for cycles before
any node is attached, so a corrupt chart can never loop the builder.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple
import logging

from .aggregation import AccountBalance
from .diagnostics import ReportWarning, WarningType, emit
from .ledger import Account, AccountType


logger = logging.getLogger("fx_ledger.hierarchy")


@dataclass
class AccountNode:
    """
    Tree node holding one account and that account's own balance.
    Children are never folded in automatically; use ``rolled_up()``.
    """
    account: Account
    balance: AccountBalance
    children: List['AccountNode'] = field(default_factory=list)

    @property
    def code(self) -> str:
        return self.account.code

    @property
    def name(self) -> str:
        return self.account.name

    @property
    def account_type(self) -> AccountType:
        return self.account.account_type

    @property
    def debit(self) -> Decimal:
        return self.balance.reporting_debit

    @property
    def credit(self) -> Decimal:
        return self.balance.reporting_credit

    @property
    def net(self) -> Decimal:
        return self.balance.reporting_net(self.account_type)

    def rolled_up(self) -> AccountBalance:
        """This account's balance plus every descendant's"""
        total = AccountBalance(self.code).merge(self.balance)
        for child in self.children:
            child_total = child.rolled_up()
            total = total.merge(AccountBalance(
                account_code=self.code,
                debit=child_total.debit,
                credit=child_total.credit,
                reporting_debit=child_total.reporting_debit,
                reporting_credit=child_total.reporting_credit,
                currencies=child_total.currencies,
                line_count=child_total.line_count,
            ))
        return total

    def rolled_up_net(self) -> Decimal:
        return self.rolled_up().reporting_net(self.account_type)

    def walk(self, depth: int = 0) -> Iterator[Tuple['AccountNode', int]]:
        """Pre-order traversal yielding (node, depth)"""
        yield self, depth
        for child in self.children:
            yield from child.walk(depth + 1)


@dataclass
class AccountTree:
    roots: List[AccountNode]
    warnings: List[ReportWarning] = field(default_factory=list)

    def walk(self) -> Iterator[Tuple[AccountNode, int]]:
        for root in self.roots:
            yield from root.walk()

    def find(self, code: str) -> Optional[AccountNode]:
        for node, _ in self.walk():
            if node.code == code:
                return node
        return None

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())


class AccountHierarchyBuilder:
    """Builds AccountTree objects; stateless"""

    def build_tree(self, accounts: List[Account],
                   balances: Mapping[str, AccountBalance]) -> AccountTree:
        """
        Build the account tree.

        Args:
            accounts: Chart-of-accounts rows to place in the tree
            balances: Aggregated balances keyed by account code

        Returns:
            AccountTree whose roots are accounts without a usable parent
        """
        warnings: List[ReportWarning] = []

        arena: Dict[str, Account] = {}
        for account in accounts:
            arena.setdefault(account.id, account)

        parent_of: Dict[str, str] = {}
        for account in arena.values():
            if not account.parent_id:
                continue
            if account.parent_id in arena:
                parent_of[account.id] = account.parent_id
            else:
                emit(ReportWarning(
                    warning_type=WarningType.ORPHAN_ACCOUNT,
                    entity_type="account",
                    entity_id=account.id,
                    message=f"Account {account.code} has unknown parent {account.parent_id}; shown as a root",
                    details={"account_code": account.code, "parent_id": account.parent_id},
                ), warnings)

        for account_id in sorted(self._find_cycle_members(parent_of), key=lambda i: arena[i].code):
            account = arena[account_id]
            emit(ReportWarning(
                warning_type=WarningType.CYCLIC_PARENT,
                entity_type="account",
                entity_id=account_id,
                message=f"Account {account.code} is part of a parent cycle; shown as a root",
                details={"account_code": account.code, "parent_id": account.parent_id},
            ), warnings)
            del parent_of[account_id]

        nodes: Dict[str, AccountNode] = {
            account_id: AccountNode(
                account=account,
                balance=balances.get(account.code) or AccountBalance(account.code),
            )
            for account_id, account in arena.items()
        }

        roots: List[AccountNode] = []
        for account_id, node in nodes.items():
            parent_id = parent_of.get(account_id)
            if parent_id is None:
                roots.append(node)
            else:
                nodes[parent_id].children.append(node)

        for node in nodes.values():
            node.children.sort(key=lambda n: n.code)
        roots.sort(key=lambda n: n.code)

        logger.debug("Built account tree: %d accounts, %d roots", len(nodes), len(roots))
        return AccountTree(roots=roots, warnings=warnings)

    @staticmethod
    def _find_cycle_members(parent_of: Mapping[str, str]) -> Set[str]:
        """Ids of accounts that lie on a cycle of parent edges"""
        on_cycle: Set[str] = set()
        finished: Set[str] = set()

        for start in parent_of:
            if start in finished:
                continue
            path: List[str] = []
            position: Dict[str, int] = {}
            current: Optional[str] = start
            while current is not None and current not in finished:
                if current in position:
                    on_cycle.update(path[position[current]:])
                    break
                position[current] = len(path)
                path.append(current)
                current = parent_of.get(current)
            finished.update(path)

        return on_cycle
