from gamecompare.main import parse_args


def test_parse_args_defaults_to_all_platforms():
    args = parse_args([])
    assert args.platform == "all" and args.force is False
    args = parse_args(["gog", "--force"])
    assert args.platform == "gog" and args.force is True
