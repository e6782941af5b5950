import pytest

from src.engines.restoration.introspection import (
    ChainedProbe,
    DeclaredShapeProbe,
    ModelIntrospector,
    TrialInferenceProbe,
    build_probe,
    find_image_input_candidates,
    find_quality_input,
)


def test_single_input_model_is_the_image_input(fake_engine_class):
    engine = fake_engine_class(inputs=["pixel_values"], channels=3)

    info = ModelIntrospector().inspect(engine)

    assert info.image_input_name == "pixel_values"
    assert info.is_grayscale is False
    assert info.has_quality_input is False
    assert info.quality_input_name is None
    assert info.image_input_shape == (1, 3, 64, 64)


def test_grayscale_model_detected_by_trial_run(fake_engine_class):
    engine = fake_engine_class(inputs=["input"], channels=1)

    info = ModelIntrospector().inspect(engine)

    assert info.is_grayscale is True
    assert info.channels == 1
    # the single-channel trial is accepted first, so no color trial is needed
    assert len(engine.calls) == 1


def test_color_model_tries_grayscale_first(fake_engine_class):
    engine = fake_engine_class(inputs=["input"], channels=3)

    ModelIntrospector(TrialInferenceProbe(probe_size=16)).inspect(engine)

    assert [feeds["input"].shape for feeds in engine.calls] == [(1, 1, 16, 16), (1, 3, 16, 16)]


def test_quality_input_detected_by_name(fake_engine_class):
    engine = fake_engine_class(inputs=["input", "qf"], channels=3)

    info = ModelIntrospector().inspect(engine)

    assert info.image_input_name == "input"
    assert info.has_quality_input is True
    assert info.quality_input_name == "qf"


def test_name_match_wins_over_positional_fallback():
    assert find_quality_input(["input", "strength_level", "extra"], "input") == "strength_level"


def test_second_of_two_inputs_assumed_to_be_quality():
    assert find_quality_input(["input", "sigma"], "input") == "sigma"


def test_more_than_two_inputs_without_match_leaves_quality_undetected(fake_engine_class):
    engine = fake_engine_class(inputs=["input", "sigma", "noise_map"], channels=3)

    info = ModelIntrospector().inspect(engine)

    assert info.has_quality_input is False
    assert info.quality_input_name is None


def test_image_candidates_from_name_hints():
    assert find_image_input_candidates(["qf", "input"]) == ["input"]
    assert find_image_input_candidates(["lq_image", "qf"]) == ["lq_image"]
    assert find_image_input_candidates(["a", "b"]) == ["a"]
    assert find_image_input_candidates([]) == []


def test_falls_back_to_first_input_when_every_probe_fails(fake_engine_class):
    # the fake only accepts 2-channel tensors, so both trials fail
    engine = fake_engine_class(inputs=["input", "qf"], channels=2)

    info = ModelIntrospector().inspect(engine)

    assert info.image_input_name == "input"
    assert info.is_grayscale is False
    assert info.image_input_shape == (1, 3, -1, -1)
    assert info.quality_input_name == "qf"


def test_introspection_never_raises(fake_engine_class):
    class BrokenEngine(fake_engine_class):
        @property
        def input_names(self):
            raise RuntimeError("session closed")

    info = ModelIntrospector().inspect(BrokenEngine())

    assert info.is_grayscale is False
    assert info.has_quality_input is False


def test_declared_shape_probe_reads_static_channels(fake_engine_class):
    engine = fake_engine_class(inputs=["input"], channels=1, shapes={"input": [1, 1, "height", "width"]})

    result = DeclaredShapeProbe().probe(engine, ["input"])

    assert result.is_grayscale is True
    assert result.input_shape == (1, 1, -1, -1)
    assert engine.calls == []


def test_declared_shape_probe_skips_dynamic_channels(fake_engine_class):
    engine = fake_engine_class(inputs=["input"], shapes={"input": [1, "channels", None, None]})

    assert DeclaredShapeProbe().probe(engine, ["input"]) is None


def test_chained_probe_falls_through_to_trial(fake_engine_class):
    engine = fake_engine_class(inputs=["input"], channels=3, shapes={"input": ["batch", None, None, None]})

    result = ChainedProbe([DeclaredShapeProbe(), TrialInferenceProbe(8)]).probe(engine, ["input"])

    assert result.is_grayscale is False
    assert result.input_shape == (1, 3, 8, 8)


def test_build_probe_by_name():
    assert isinstance(build_probe("trial"), TrialInferenceProbe)
    assert isinstance(build_probe("declared"), DeclaredShapeProbe)
    assert isinstance(build_probe("declared_then_trial"), ChainedProbe)
    with pytest.raises(ValueError):
        build_probe("guess")
