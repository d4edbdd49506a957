"""Unit tests for the locale_tree module."""
import copy
import unittest

from nexti18n.errors import MalformedTreeError
from nexti18n.locale_tree import (
    count_leaves,
    deep_merge,
    diff_missing,
    extract_used_keys,
    flatten,
    get_leaf,
    set_leaf,
    unflatten,
    validate_tree
)

REFERENCE = {
    "title": "Hola",
    "nav": {"home": "Inicio", "about": "Acerca de", "user": {"greeting": "Hola {name}"}},
    "footer": {"copyright": "Derechos"},
}


class TestDiffMissing(unittest.TestCase):
    def test_missing_branches_are_copied_whole(self):
        target = {"title": "Hello", "nav": {"home": "Home"}}
        missing = diff_missing(REFERENCE, target)
        self.assertEqual(missing, {
            "nav": {"about": "Acerca de", "user": {"greeting": "Hola {name}"}},
            "footer": {"copyright": "Derechos"},
        })

    def test_empty_when_every_reference_path_exists(self):
        target = copy.deepcopy(REFERENCE)
        target["extra"] = "Only here"
        self.assertEqual(diff_missing(REFERENCE, target), {})

    def test_empty_target_misses_everything(self):
        self.assertEqual(diff_missing(REFERENCE, {}), REFERENCE)

    def test_target_leaf_shadowing_a_reference_mapping_is_missing(self):
        missing = diff_missing({"nav": {"home": "Inicio"}}, {"nav": "Navigation"})
        self.assertEqual(missing, {"nav": {"home": "Inicio"}})

    def test_result_does_not_share_nodes_with_reference(self):
        missing = diff_missing(REFERENCE, {})
        missing["nav"]["home"] = "changed"
        self.assertEqual(REFERENCE["nav"]["home"], "Inicio")

    def test_rejects_non_string_leaves(self):
        with self.assertRaises(MalformedTreeError) as ctx:
            diff_missing({"a": {"b": 3}}, {})
        self.assertEqual(ctx.exception.path, "a.b")


class TestDeepMerge(unittest.TestCase):
    def test_right_bias(self):
        target = {"a": "1", "b": "2"}
        deep_merge(target, {"b": "3", "c": "4"})
        self.assertEqual(target, {"a": "1", "b": "3", "c": "4"})

    def test_nested_mappings_merge_key_by_key(self):
        target = {"nav": {"home": "Home"}}
        deep_merge(target, {"nav": {"about": "About"}})
        self.assertEqual(target, {"nav": {"home": "Home", "about": "About"}})

    def test_idempotent(self):
        once = deep_merge(copy.deepcopy(REFERENCE), {"nav": {"home": "Start"}, "new": "Neu"})
        twice = deep_merge(copy.deepcopy(once), {"nav": {"home": "Start"}, "new": "Neu"})
        self.assertEqual(once, twice)

    def test_merging_a_diff_completes_the_target(self):
        target = {"title": "Hello"}
        deep_merge(target, diff_missing(REFERENCE, target))
        self.assertEqual(diff_missing(REFERENCE, target), {})
        self.assertEqual(target["title"], "Hello")

    def test_source_nodes_are_copied(self):
        source = {"nav": {"home": "Home"}}
        target = {}
        deep_merge(target, source)
        source["nav"]["home"] = "changed"
        self.assertEqual(target["nav"]["home"], "Home")


class TestFlattenUnflatten(unittest.TestCase):
    def test_flatten_uses_dotted_paths(self):
        self.assertEqual(flatten({"a": {"b": "x", "c": {"d": "y"}}, "e": "z"}),
                         [("a.b", "x"), ("a.c.d", "y"), ("e", "z")])

    def test_round_trip(self):
        self.assertEqual(unflatten(flatten(REFERENCE)), REFERENCE)

    def test_custom_separator(self):
        pairs = flatten(REFERENCE, separator="/")
        self.assertIn(("nav/user/greeting", "Hola {name}"), pairs)
        self.assertEqual(unflatten(pairs, separator="/"), REFERENCE)

    def test_unflatten_conflict_raises(self):
        with self.assertRaises(MalformedTreeError):
            unflatten([("a", "leaf"), ("a.b", "nested")])
        with self.assertRaises(MalformedTreeError):
            unflatten([("a.b", "nested"), ("a", "leaf")])

    def test_count_leaves(self):
        self.assertEqual(count_leaves(REFERENCE), 5)
        self.assertEqual(count_leaves({}), 0)


class TestHelpers(unittest.TestCase):
    def test_get_leaf(self):
        self.assertEqual(get_leaf(REFERENCE, "nav.user.greeting"), "Hola {name}")
        self.assertIsNone(get_leaf(REFERENCE, "nav.user"))
        self.assertIsNone(get_leaf(REFERENCE, "nav.missing"))
        self.assertIsNone(get_leaf(REFERENCE, "title.sub"))

    def test_validate_tree(self):
        validate_tree(REFERENCE)
        for bad in ({"a": ["x"]}, {"a": None}, {"a": True}, ["x"]):
            with self.assertRaises(MalformedTreeError):
                validate_tree(bad)

    def test_validate_tree_rejects_keys_that_read_as_paths(self):
        for bad in ({"a.b": "x"}, {"nav": {"home.title": "x"}}, {"": "x"}):
            with self.subTest(tree=bad):
                with self.assertRaises(MalformedTreeError):
                    validate_tree(bad)

    def test_set_leaf_creates_intermediate_mappings(self):
        tree = {"nav": {"home": "Inicio"}}
        set_leaf(tree, "nav.user.greeting", "Hola")
        set_leaf(tree, "title", "Hola")
        self.assertEqual(tree, {"nav": {"home": "Inicio", "user": {"greeting": "Hola"}}, "title": "Hola"})

    def test_set_leaf_conflicts_leave_tree_unchanged(self):
        tree = {"header": "Hello", "nav": {"home": "Inicio"}}
        before = copy.deepcopy(tree)
        with self.assertRaises(MalformedTreeError):
            set_leaf(tree, "header.title", "Title")
        with self.assertRaises(MalformedTreeError):
            set_leaf(tree, "nav", "Navigation")
        self.assertEqual(tree, before)


class TestExtractUsedKeys(unittest.TestCase):
    def test_finds_lookup_calls(self):
        source = 't("a.b"); t(\'c.d\');'
        self.assertEqual(extract_used_keys(source), {"a.b", "c.d"})

    def test_ignores_lookups_inside_string_literals(self):
        source = 't("a.b"); const s = "t(\\"z.z\\")"; t(\'c.d\');'
        self.assertEqual(extract_used_keys(source), {"a.b", "c.d"})

    def test_ignores_comments(self):
        source = '// t("old.key")\n/* t("other.key") */\n<p>{t("live.key")}</p>'
        self.assertEqual(extract_used_keys(source), {"live.key"})

    def test_jsx_and_extra_arguments(self):
        source = """
        export default function Header() {
          const { t } = useTranslation('common');
          return <h1 title={t('header.tooltip')}>{t("header_title", { count: 2 })}</h1>;
        }
        """
        self.assertEqual(extract_used_keys(source), {"header.tooltip", "header_title"})

    def test_member_call_and_template_key(self):
        source = 'i18n.t(`menu.open`); format(x); const y = t(`dyn.${id}`);'
        self.assertEqual(extract_used_keys(source), {"menu.open"})

    def test_other_functions_ending_in_t_are_ignored(self):
        self.assertEqual(extract_used_keys('split("a.b"); alert("x.y");'), set())

    def test_apostrophes_in_jsx_text_are_not_strings(self):
        self.assertEqual(extract_used_keys("<p>It's {t('a')} and Bob's</p>"), {"a"})
        source = "<li>Don't {t('nav.home')}</li>\n<li>users' {t('nav.about')}</li>"
        self.assertEqual(extract_used_keys(source), {"nav.home", "nav.about"})

    def test_regex_literals_are_consumed(self):
        source = "const re = /['\"]/g; const x = t('b');"
        self.assertEqual(extract_used_keys(source), {"b"})
        self.assertEqual(extract_used_keys("if (/t\\('x'\\)/.test(s)) t('y');"), {"y"})

    def test_division_and_closing_tags_are_not_regex(self):
        source = "const half = total / 2; const label = t('half') / count / 2;\n<b>{t('c')}</b><i>{t('d')}</i>"
        self.assertEqual(extract_used_keys(source), {"half", "c", "d"})

    def test_urls_in_jsx_text_are_not_comments(self):
        self.assertEqual(extract_used_keys("<p>See https://example.com {t('site')}</p>"), {"site"})
