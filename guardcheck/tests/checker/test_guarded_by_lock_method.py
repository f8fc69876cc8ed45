# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lock-method and declaration scenarios, written with BUG markers.

A `# BUG: Diagnostic contains: ...` comment expects a diagnostic on the next
code line; every other diagnostic fails the test.
"""

from guardcheck.test_helpers import CompilationTestHelper

HEADER = (
	"import threading",
	"from typing import Annotated",
	"from guardcheck import guarded_by, lock_method, unlock_method",
	"",
)


def test_lock_method_then_unlock_in_finally():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"		self.x: Annotated[int, guarded_by('lock')] = 0",
		"",
		"	@lock_method('lock')",
		"	def lock_(self):",
		"		self.lock.acquire()",
		"",
		"	@unlock_method('lock')",
		"	def unlock(self):",
		"		self.lock.release()",
		"",
		"	def m(self):",
		"		self.lock_()",
		"		try:",
		"			self.x += 1",
		"		finally:",
		"			self.unlock()",
	).do_test()


def test_static_method_guarded_by_parameter():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Foo:",
		"	pass",
		"",
		"class Test:",
		"	@staticmethod",
		"	@guarded_by('foo')",
		"	def m(foo: Foo):",
		"		pass",
	).do_test()


def test_static_method_guarded_by_indirect_chain():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class IndirectFoo:",
		"	def get_lock(self) -> threading.Lock:",
		"		return threading.Lock()",
		"",
		"class Foo:",
		"	indirect_foo: IndirectFoo",
		"",
		"class Test:",
		"	@staticmethod",
		"	@guarded_by('foo.indirect_foo.get_lock()')",
		"	def m(foo: Foo):",
		"		pass",
	).do_test()


def test_static_method_guarded_by_instance_method_call():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def get_lock(self):",
		"		return threading.Lock()",
		"",
		"	@staticmethod",
		"	@guarded_by('get_lock()')",
		"	# BUG: Diagnostic contains: static member guarded by instance lock 'get_lock()'",
		"	def m():",
		"		pass",
	).do_test()


def test_guarded_field_accessed_without_lock():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"		self.x: Annotated[int, guarded_by('lock')] = 0",
		"",
		"	def m(self):",
		"		# BUG: Diagnostic contains: Test.x is guarded by 'lock' but no matching lock is held",
		"		self.x = 1",
	).do_test()


def test_lock_method_on_another_receiver_does_not_cover_self():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"		self.x: Annotated[int, guarded_by('lock')] = 0",
		"",
		"	@lock_method('lock')",
		"	def lock_(self):",
		"		self.lock.acquire()",
		"",
		"	@unlock_method('lock')",
		"	def unlock(self):",
		"		self.lock.release()",
		"",
		"	def m(self, other: 'Test'):",
		"		other.lock_()",
		"		other.x = 1",
		"		# BUG: Diagnostic contains: no matching lock is held",
		"		self.x = 1",
		"		other.unlock()",
		"		# BUG: Diagnostic contains: required lock resolves to 'other.lock'",
		"		other.x = 2",
	).do_test()


def test_unlock_before_access():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"		self.x: Annotated[int, guarded_by('lock')] = 0",
		"",
		"	@lock_method('lock')",
		"	def lock_(self):",
		"		self.lock.acquire()",
		"",
		"	@unlock_method('lock')",
		"	def unlock(self):",
		"		self.lock.release()",
		"",
		"	def m(self):",
		"		self.lock_()",
		"		self.x = 1",
		"		self.unlock()",
		"		# BUG: Diagnostic contains: guarded by 'lock'",
		"		self.x = 2",
	).do_test()


def test_static_lock_method_with_instance_lock_is_rejected():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"",
		"	@staticmethod",
		"	@lock_method('lock')",
		"	# BUG: Diagnostic contains: static member acquiring instance lock 'lock'",
		"	def grab():",
		"		pass",
	).do_test()


def test_unresolvable_and_malformed_annotations_are_reported_once():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Test:",
		"	def __init__(self):",
		"		# BUG: Diagnostic contains: unresolvable lock expression 'nope'",
		"		self.x: Annotated[int, guarded_by('nope')] = 0",
		"		# BUG: Diagnostic contains: malformed lock expression",
		"		self.y: Annotated[int, guarded_by('lock(')] = 0",
		"",
		"	def m(self):",
		"		self.x = 1",
		"		self.y = 1",
		"		return self.x + self.y",
	).do_test()


def test_static_field_guarded_by_instance_field_is_rejected():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"from typing import ClassVar",
		"",
		"class Test:",
		"	# BUG: Diagnostic contains: static member guarded by instance lock 'lock'",
		"	count: ClassVar[Annotated[int, guarded_by('lock')]] = 0",
		"",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
	).do_test()


def test_static_method_guarded_by_instance_field_chain_is_rejected():
	CompilationTestHelper().add_source_lines(
		"test",
		*HEADER,
		"class Holder:",
		"	def __init__(self):",
		"		self.lock = threading.Lock()",
		"",
		"class Test:",
		"	def __init__(self):",
		"		self.holder = Holder()",
		"",
		"	@staticmethod",
		"	@guarded_by('holder.lock')",
		"	# BUG: Diagnostic contains: static member guarded by instance lock 'holder.lock'",
		"	def m():",
		"		pass",
	).do_test()
