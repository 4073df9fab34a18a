import pytest

from nestedesxi.errors import ConfigError
from nestedesxi.fleet.naming import fqdn, parse_name_template


def test_fixed_width_sequence():
    t = parse_name_template("esxi{1,fixed=3}")
    assert t.hostnames(3) == ["esxi001", "esxi002", "esxi003"]


def test_no_padding_without_fixed():
    t = parse_name_template("esxi{9}")
    assert t.hostnames(3) == ["esxi9", "esxi10", "esxi11"]


def test_fixed_zero_means_no_padding():
    assert parse_name_template("host{5,fixed=0}").hostname(0) == "host5"


def test_spaces_inside_braces_are_tolerated():
    t = parse_name_template("esxi{1, fixed=2}")
    assert (t.prefix, t.start, t.width) == ("esxi", 1, 2)


def test_suffix_is_kept():
    assert parse_name_template("lab-{1,fixed=2}-esx").hostname(1) == "lab-02-esx"


@pytest.mark.parametrize(
    "template",
    ["esxi", "esxi{}", "esxi{a}", "esxi{1,fixed=x}", "esxi{1,width=3}", "esxi{1,fixed=-1}", "esxi{1}{2}"],
)
def test_bad_templates_raise_config_error(template):
    with pytest.raises(ConfigError):
        parse_name_template(template)


def test_fqdn():
    assert fqdn("esxi01", "lab.local") == "esxi01.lab.local"
    assert fqdn("esxi01", "") == "esxi01"
