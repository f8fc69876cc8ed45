# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Guard violation checks over whole modules."""

from guardcheck.core.diagnostics import E_GUARD_VIOLATION, E_UNRESOLVABLE_LOCK_EXPR
from guardcheck.test_helpers import CompilationTestHelper, check_source, messages

ACCOUNT = """
import threading
from typing import Annotated, ClassVar

from guardcheck import guarded_by


class Account:
	registry_lock = threading.Lock()
	accounts: ClassVar[Annotated[list, guarded_by("registry_lock")]] = []

	def __init__(self):
		self.lock = threading.Lock()
		self.balance: Annotated[int, guarded_by("lock")] = 0

	@guarded_by("lock")
	def _apply(self, amount):
		self.balance += amount

	def deposit(self, amount):
		with self.lock:
			self._apply(amount)

	def register(self):
		with Account.registry_lock:
			self.accounts.append(self)
		with self.registry_lock:
			Account.accounts.append(self)
"""


def _violations(diags):
	return [d for d in diags if d.code == E_GUARD_VIOLATION]


def test_clean_module_has_no_diagnostics():
	assert check_source(ACCOUNT) == []


def test_guarded_method_call_needs_lock():
	src = ACCOUNT + """
	def broken(self):
		self._apply(1)
"""
	diags = check_source(src)
	assert messages(diags) == ["Account._apply is guarded by 'lock' but no matching lock is held"]
	diag = diags[0]
	assert diag.severity == "error"
	assert diag.check == "GuardedBy"
	assert diag.span.line == src.splitlines().index("\t\tself._apply(1)") + 1
	assert diag.span.column == 3


def test_static_field_through_any_receiver_needs_class_lock():
	src = ACCOUNT + """
	def leak(self):
		with self.lock:
			return len(self.accounts)
"""
	assert messages(check_source(src)) == [
		"Account.accounts is guarded by 'registry_lock' but no matching lock is held",
	]


def test_guarded_method_body_assumes_its_guard():
	assert check_source(ACCOUNT) == []
	assert messages(check_source(ACCOUNT, flags=["AssumeGuardHeldInGuardedMethods=false"])) == [
		"Account.balance is guarded by 'lock' but no matching lock is held",
	]


def test_parameter_substitution_at_guarded_call():
	CompilationTestHelper().add_source(
		"test",
		ACCOUNT
		+ """

class Transfer:
	@staticmethod
	@guarded_by("account.lock")
	def debit(account: Account, amount):
		account.balance -= amount

	def run(self, a: Account, b: Account):
		with a.lock:
			Transfer.debit(a, 1)
			Transfer.debit(account=a, amount=2)
			# BUG: Diagnostic contains: Transfer.debit is guarded by 'account.lock'
			Transfer.debit(b, 1)
""",
	).do_test()


def test_module_global_guarded_by_module_lock():
	src = """
import threading
from typing import Annotated

from guardcheck import guarded_by

COUNTER_LOCK = threading.Lock()
counter: Annotated[int, guarded_by("COUNTER_LOCK")] = 0


def bump():
	global counter
	with COUNTER_LOCK:
		counter += 1


def peek():
	return counter


def shadowed():
	counter = 3
	return counter
"""
	assert messages(check_source(src)) == ["counter is guarded by 'COUNTER_LOCK' but no matching lock is held"]


def test_constructor_and_exempt_methods():
	src = """
import threading
from typing import Annotated

from guardcheck import guarded_by


class Box:
	def __init__(self):
		self.lock = threading.Lock()
		self.value: Annotated[int, guarded_by("lock")] = 0
		self.value += 1

	def setup(self):
		self.value = 2
"""
	assert len(check_source(src)) == 1
	assert check_source(src, flags=["ExemptMethods=__init__,setup"]) == []


def test_lambdas_and_nested_functions_start_without_locks():
	CompilationTestHelper().add_source(
		"test",
		"""
import threading
from typing import Annotated

from guardcheck import guarded_by


class Box:
	def __init__(self):
		self.lock = threading.Lock()
		self.value: Annotated[int, guarded_by("lock")] = 0

	def later(self):
		with self.lock:
			# BUG: Diagnostic contains: Box.value is guarded by 'lock'
			return lambda: self.value

	def nested(self):
		with self.lock:
			def inner():
				# BUG: Diagnostic contains: Box.value is guarded by 'lock'
				self.value = 1
			inner()
			return self.value
""",
	).do_test()


def test_subclass_access_with_inherited_lock():
	src = """
import threading
from typing import Annotated

from guardcheck import guarded_by


class Base:
	def __init__(self):
		self.lock = threading.Lock()
		self.items: Annotated[list, guarded_by("lock")] = []


class Derived(Base):
	def add(self, item):
		with self.lock:
			self.items.append(item)

	def peek(self):
		return self.items[0]
"""
	diags = check_source(src)
	assert messages(diags) == ["Base.items is guarded by 'lock' but no matching lock is held"]


def test_property_guard_and_setter_body():
	src = """
import threading
from typing import Annotated

from guardcheck import guarded_by


class Temp:
	def __init__(self):
		self.lock = threading.Lock()
		self._value: Annotated[float, guarded_by("lock")] = 0.0

	@property
	@guarded_by("lock")
	def value(self):
		return self._value

	@value.setter
	def value(self, v):
		self._value = v

	def read(self):
		with self.lock:
			return self.value

	def read_unlocked(self):
		return self.value
"""
	assert messages(check_source(src)) == [
		"Temp._value is guarded by 'lock' but no matching lock is held",
		"Temp.value is guarded by 'lock' but no matching lock is held",
	]


def test_cross_module_guard_and_lock():
	files = {
		"shared": """
import threading
from typing import Annotated

from guardcheck import guarded_by

LOCK = threading.Lock()
table: Annotated[dict, guarded_by("LOCK")] = {}
""",
	}
	src = """
import shared
from shared import LOCK


def good():
	with LOCK:
		shared.table["a"] = 1
	with shared.LOCK:
		shared.table["b"] = 2


def bad():
	shared.table.clear()
"""
	diags = check_source(src, files=files)
	assert messages(diags) == ["table is guarded by 'LOCK' but no matching lock is held"]
	assert diags[0].span.file == "test.py"


def test_dynamic_lock_reference_is_flagged_not_analyzed():
	src = """
from typing import Annotated

from guardcheck import guarded_by

NAME = "lock"


class Box:
	def __init__(self):
		self.value: Annotated[int, guarded_by(NAME)] = 0

	def touch(self):
		self.value = 1
"""
	diags = check_source(src)
	assert [d.code for d in diags] == [E_UNRESOLVABLE_LOCK_EXPR]
	assert diags[0].severity == "warning"
	assert diags[0].check == "LockAnnotations"
	assert _violations(diags) == []


def test_release_in_else_block_is_seen_by_finally():
	CompilationTestHelper().add_source(
		"test",
		"""
import threading
from typing import Annotated

from guardcheck import guarded_by, lock_method, unlock_method


class T:
	def __init__(self):
		self.lock = threading.Lock()
		self.x: Annotated[int, guarded_by("lock")] = 0

	@lock_method("lock")
	def grab(self):
		self.lock.acquire()

	@unlock_method("lock")
	def drop(self):
		self.lock.release()

	def m(self):
		self.grab()
		try:
			pass
		except ValueError:
			pass
		else:
			self.drop()
			raise RuntimeError()
		finally:
			# BUG: Diagnostic contains: T.x is guarded by 'lock'
			self.x = 1
		self.x = 2
		self.drop()
""",
	).do_test()
