"""
reduce-array-dim tests.

Covers:
  1. Declaration rewriting (fixed and incomplete outer dimensions)
  2. Use-site rewriting (constant folding, textual linearization, nesting)
  3. Candidate numbering, deduplication and exhaustion
  4. Scoping: shadowed and redeclared arrays
  5. Internal consistency failures leave no output
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from arraydim.reduce_array_dim import (
    ReduceArrayDim, ArrayCandidateCollector, bracket_spans, unwind_subscripts,
)
from arraydim.scope import TranslationUnit
from arraydim.transformation import (
    TransformStatus, get_transformation, get_all_transformations,
)


def reduce(source: str, counter: int = 1):
    return ReduceArrayDim(counter=counter).transform(source)


class TestDeclarationRewrite(unittest.TestCase):

    def test_three_dimensions_merge_inner_two(self):
        src = "int a[2][3][4];\nint x;\nvoid foo(void) { x = a[1][2][3]; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("int a[2][12];", outcome.output)
        self.assertIn("x = a[1][11];", outcome.output)

    def test_two_dimensions_become_one(self):
        src = "int a[3][4];\nint f(void) { return a[2][1]; }\n"
        outcome = reduce(src)
        self.assertIn("int a[12];", outcome.output)
        self.assertIn("return a[9];", outcome.output)

    def test_result_has_one_fewer_dimension(self):
        src = "long m[5][6][7];\n"
        outcome = reduce(src)
        unit = TranslationUnit.from_text(outcome.output)
        self.assertEqual(len(unit.var_decls), 1)
        self.assertEqual(unit.var_decls[0].dimensionality, 2)
        self.assertEqual([d.extent for d in unit.var_decls[0].dims], [5, 42])

    def test_incomplete_outer_dimension_stays_empty(self):
        """a[][2] is reduced to a[] without writing a product."""
        src = "extern int a[][2];\nint get(int i, int j) { return a[i][j]; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("extern int a[];", outcome.output)
        self.assertIn("return a[(i)*2+j];", outcome.output)

    def test_incomplete_outer_dimension_with_initializer(self):
        src = "int a[][3] = {{1, 2, 3}, {4, 5, 6}};\nint x = 0;\n"
        outcome = reduce(src)
        self.assertIn("int a[] = {{1, 2, 3}, {4, 5, 6}};", outcome.output)

    def test_extents_from_macros_and_enums(self):
        src = ("#define ROWS 3\n"
               "enum { COLS = 2 + 2 };\n"
               "int grid[ROWS][COLS];\n"
               "void set(void) { grid[1][2] = 7; }\n")
        outcome = reduce(src)
        self.assertIn("int grid[12];", outcome.output)
        self.assertIn("grid[6] = 7;", outcome.output)

    def test_redeclarations_are_all_rewritten(self):
        src = "extern int a[2][3];\nint a[2][3];\nint f(void) { return a[1][1]; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.output.count("int a[6];"), 2)
        self.assertIn("return a[4];", outcome.output)

    def test_array_of_pointers(self):
        src = "int *p[2][3];\nint f(void) { return p[1][0][4]; }\n"
        outcome = reduce(src)
        self.assertIn("int *p[6];", outcome.output)
        self.assertIn("return p[3][4];", outcome.output)

    def test_bracket_spans_come_from_declarator_tokens(self):
        unit = TranslationUnit.from_text("int a [2] /* ] */ [ 3 ];\n")
        source = unit.source
        spans = bracket_spans(unit.var_decls[0].dims)
        self.assertEqual(spans, [(6, 8), (source.index(b"[ 3"), source.index(b" ];") + 1)])

    def test_brackets_in_comments_are_ignored(self):
        src = "int a /*[x]*/ [2][3];\nint f(void) { return a[1][2]; }\n"
        outcome = reduce(src)
        self.assertIn("int a /*[x]*/ [6];", outcome.output)
        self.assertIn("return a[5];", outcome.output)

    def test_uncomputable_outer_extent_is_kept(self):
        src = ("struct S { int x, y; };\nint a[sizeof(struct S)][3][4];\n"
               "int f(void) { return a[1][2][3]; }\n")
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("int a[sizeof(struct S)][12];", outcome.output)
        self.assertIn("return a[1][11];", outcome.output)

    def test_uncomputable_retained_extent_is_multiplied_textually(self):
        src = ("int b[5];\nint a[sizeof b / sizeof b[0]][3];\n"
               "int f(int i) { return a[i][2]; }\n")
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("int a[(sizeof b / sizeof b[0])*3];", outcome.output)
        self.assertIn("return a[(i)*3+2];", outcome.output)


class TestSubscriptRewrite(unittest.TestCase):

    def test_non_constant_indices_are_linearized_textually(self):
        src = ("int f(void);\nint g(void);\nint a[2][3];\n"
               "void foo(void) { a[f()][g()] = 1; }\n")
        outcome = reduce(src)
        self.assertIn("a[(f())*3+g()] = 1;", outcome.output)

    def test_side_effects_are_evaluated_once(self):
        src = "int a[4][5];\nvoid foo(int i, int j) { a[i++][j++] = 0; }\n"
        outcome = reduce(src)
        self.assertIn("a[(i++)*5+j++] = 0;", outcome.output)
        self.assertEqual(outcome.output.count("i++"), 1)
        self.assertEqual(outcome.output.count("j++"), 1)

    def test_mixed_constant_and_variable_index(self):
        src = "int a[4][5];\nint foo(int i) { return a[i][2] + a[1][i]; }\n"
        outcome = reduce(src)
        self.assertIn("a[(i)*5+2] + a[(1)*5+i]", outcome.output)

    def test_parenthesized_and_character_literals_fold(self):
        src = "char a[2][3];\nint foo(void) { return a[(1)][0x2] + a['\\001'][1]; }\n"
        outcome = reduce(src)
        self.assertIn("return a[5] + a[4];", outcome.output)

    def test_universal_character_name_index_folds(self):
        src = "int a[2][3];\nint f(void) { return a[L'\\u0041'][0] + a['\\u0001'][2]; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("return a[195] + a[5];", outcome.output)

    def test_multi_character_index_is_linearized(self):
        """'ab' has an implementation-defined value, so it is kept as text."""
        src = "int a[2][3];\nint f(void) { return a['ab'][0]; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.SUCCESS)
        self.assertIn("return a[('ab')*3+0];", outcome.output)

    def test_nested_use_inside_index(self):
        src = "int a[2][3];\nint x;\nvoid foo(void) { x = a[a[0][1]][2]; }\n"
        outcome = reduce(src)
        self.assertIn("x = a[(a[1])*3+2];", outcome.output)

    def test_partial_subscripts_are_left_alone(self):
        src = ("int a[2][3][4];\nint *p;\n"
               "void foo(void) { p = a[1][2]; a[0][1][2] = 1; }\n")
        outcome = reduce(src)
        self.assertIn("p = a[1][2];", outcome.output)
        self.assertIn("a[0][6] = 1;", outcome.output)

    def test_parenthesized_base(self):
        src = "int a[2][3];\nint foo(void) { return (a)[1][2]; }\n"
        outcome = reduce(src)
        self.assertIn("return (a)[5];", outcome.output)

    def test_unwind_subscripts_orders_outermost_first(self):
        unit = TranslationUnit.from_text("int a[2][3];\nint x = 0;\nvoid f(void) { x = a[1][2]; }\n")
        outer = unit.subscripts[-1]
        base, chain = unwind_subscripts(outer)
        self.assertEqual(unit.text(base), "a")
        self.assertEqual([unit.text(n) for n in chain], ["a[1]", "a[1][2]"])


class TestSelection(unittest.TestCase):

    def test_counter_selects_in_declaration_order(self):
        src = "int a[2][3];\nint b[4][5];\nvoid f(void) { a[1][1] = b[1][1]; }\n"
        outcome = reduce(src, counter=2)
        self.assertIn("int a[2][3];", outcome.output)
        self.assertIn("int b[20];", outcome.output)
        self.assertIn("a[1][1] = b[6];", outcome.output)

    def test_counter_beyond_instances_is_no_instance(self):
        src = "int a[2][3];\nvoid f(void) { a[1][1] = 0; }\n"
        outcome = reduce(src, counter=2)
        self.assertEqual(outcome.status, TransformStatus.NO_INSTANCE)
        self.assertEqual(outcome.instance_count, 1)
        self.assertIsNone(outcome.output)

    def test_no_arrays_is_no_instance(self):
        outcome = reduce("int x;\n")
        self.assertEqual(outcome.status, TransformStatus.NO_INSTANCE)
        self.assertEqual(outcome.instance_count, 0)

    def test_ineligible_declarations_are_not_counted(self):
        src = ("int v[10];\nint *p;\nint (*q)[3];\n"
               "typedef int row[4];\nrow r[2][3];\n"
               "void f(int n, int m[][3]) { int vla[n][3]; }\n")
        self.assertEqual(ReduceArrayDim().query_instances(src), 0)

    def test_uncomputable_constant_extents_are_counted(self):
        src = ("struct S { int x, y; };\nint a[sizeof(struct S)][3][4];\n"
               "int b[5];\nint c[sizeof b / sizeof b[0]][3];\n")
        self.assertEqual(ReduceArrayDim().query_instances(src), 2)
        outcome = reduce(src, counter=2)
        self.assertIn("int c[(sizeof b / sizeof b[0])*3];", outcome.output)
        self.assertIn("int a[sizeof(struct S)][3][4];", outcome.output)

    def test_uncomputable_innermost_extent_is_not_counted(self):
        src = "struct S { int x; };\nint a[2][sizeof(struct S)];\n"
        self.assertEqual(ReduceArrayDim().query_instances(src), 0)

    def test_redeclarations_count_once(self):
        src = "extern int a[2][3];\nint a[2][3];\nint b[2][2];\n"
        self.assertEqual(ReduceArrayDim().query_instances(src), 2)

    def test_collection_is_deterministic(self):
        src = "int a[2][3];\nvoid f(void) { int b[4][5]; static int c[6][7]; }\n"
        unit = TranslationUnit.from_text(src)
        first = ArrayCandidateCollector(3).collect(unit)
        second = ArrayCandidateCollector(3).collect(unit)
        self.assertEqual(first[0], 3)
        self.assertIs(first[1].entity, second[1].entity)
        self.assertEqual(first[1].name, "c")
        self.assertEqual(first[1].instance, 3)

    def test_invalid_counter(self):
        with self.assertRaises(ValueError):
            ReduceArrayDim(counter=0)


class TestScoping(unittest.TestCase):

    SRC = ("int a[2][3];\n"
           "void f(void) { int a[4][5]; a[1][1] = 0; }\n"
           "void g(void) { a[1][1] = 0; }\n")

    @classmethod
    def setUpClass(cls):
        cls.global_outcome = reduce(cls.SRC, counter=1)
        cls.local_outcome = reduce(cls.SRC, counter=2)

    def test_global_rewrite_skips_shadowing_local(self):
        outcome = self.global_outcome
        self.assertIn("int a[6];", outcome.output)
        self.assertIn("void f(void) { int a[4][5]; a[1][1] = 0; }", outcome.output)
        self.assertIn("void g(void) { a[4] = 0; }", outcome.output)

    def test_local_rewrite_skips_global_uses(self):
        outcome = self.local_outcome
        self.assertIn("int a[2][3];", outcome.output)
        self.assertIn("void f(void) { int a[20]; a[6] = 0; }", outcome.output)
        self.assertIn("void g(void) { a[1][1] = 0; }", outcome.output)

    def test_block_extern_refers_to_global(self):
        src = ("int a[2][3];\n"
               "void f(void) { extern int a[2][3]; a[1][2] = 0; }\n")
        outcome = reduce(src)
        self.assertEqual(ReduceArrayDim().query_instances(src), 1)
        self.assertEqual(outcome.output.count("int a[6];"), 2)
        self.assertIn("a[5] = 0;", outcome.output)


class TestInternalConsistency(unittest.TestCase):

    def test_disagreeing_redeclarations_abort_without_output(self):
        src = "extern int a[2][3];\nint a[2][4];\nvoid f(void) { a[1][1] = 0; }\n"
        outcome = reduce(src)
        self.assertEqual(outcome.status, TransformStatus.INTERNAL_ERROR)
        self.assertIsNone(outcome.output)
        self.assertIn("innermost extent", outcome.message)


class TestRegistry(unittest.TestCase):

    def test_registered_by_name(self):
        self.assertIs(get_transformation("reduce-array-dim"), ReduceArrayDim)
        self.assertIn("reduce-array-dim", get_all_transformations())

    def test_unknown_name(self):
        with self.assertRaises(KeyError):
            get_transformation("no-such-pass")


if __name__ == "__main__":
    unittest.main()
