# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Lock-expression parser tests: tree shapes, receiver names, malformed input."""

import pytest

from guardcheck.core.errors import LockExpressionError, MalformedLockExpression
from guardcheck.lockexpr import (
	Identifier,
	Invocation,
	Select,
	ThisReference,
	parse_lock_expression,
	render,
)
from guardcheck.lockexpr.ast import root_of


def test_bare_identifier():
	assert parse_lock_expression("lock") == Identifier("lock")


def test_self_and_this_are_receiver():
	assert parse_lock_expression("self") == ThisReference()
	assert parse_lock_expression("this") == ThisReference()


def test_select_chain_is_left_nested():
	assert parse_lock_expression("foo.bar.lock") == Select(Select(Identifier("foo"), "bar"), "lock")


def test_indirect_chain_with_invocation():
	expr = parse_lock_expression("foo.indirect_foo.get_lock()")
	assert expr == Invocation(Select(Identifier("foo"), "indirect_foo"), "get_lock")


def test_bare_call_has_no_base():
	assert parse_lock_expression("get_lock()") == Invocation(None, "get_lock")


def test_receiver_chain():
	assert parse_lock_expression("self.mu") == Select(ThisReference(), "mu")
	assert parse_lock_expression("self.get().lock") == Select(Invocation(ThisReference(), "get"), "lock")


def test_inline_whitespace_is_ignored():
	assert parse_lock_expression(" foo . lock ") == Select(Identifier("foo"), "lock")


def test_self_only_special_as_leading_name():
	assert parse_lock_expression("outer.self") == Select(Identifier("outer"), "self")


@pytest.mark.parametrize(
	"text",
	[
		"foo.",
		"foo..lock",
		"get_lock(",
		"get_lock())",
		"get_lock(1)",
		"foo.get(x)",
		"foo-bar",
		"1lock",
		".lock",
		"foo lock",
	],
)
def test_malformed_inputs(text):
	with pytest.raises(MalformedLockExpression) as info:
		parse_lock_expression(text)
	assert info.value.text == text
	assert "malformed lock expression" in str(info.value)


def test_empty_text_is_malformed():
	with pytest.raises(MalformedLockExpression):
		parse_lock_expression("")
	with pytest.raises(MalformedLockExpression):
		parse_lock_expression("   ")


def test_malformed_reports_column():
	with pytest.raises(MalformedLockExpression) as info:
		parse_lock_expression("foo.-")
	assert info.value.column == 5
	assert "column 5" in str(info.value)


def test_errors_are_value_errors():
	with pytest.raises(ValueError):
		parse_lock_expression("a..b")
	assert issubclass(MalformedLockExpression, LockExpressionError)


@pytest.mark.parametrize(
	"text",
	["lock", "self", "self.lock", "foo.indirect_foo.get_lock()", "get_lock()", "a.b().c.d()"],
)
def test_render_parse_round_trip(text):
	expr = parse_lock_expression(text)
	assert render(expr) == text
	assert parse_lock_expression(render(expr)) == expr


def test_this_renders_as_self():
	assert render(parse_lock_expression("this.lock")) == "self.lock"


def test_root_of_chain():
	assert root_of(parse_lock_expression("foo.bar.baz()")) == Identifier("foo")
	assert root_of(parse_lock_expression("get().x")) == Invocation(None, "get")
	assert root_of(parse_lock_expression("self.x")) == ThisReference()
