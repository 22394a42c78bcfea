"""Unit tests for SPA framework probes."""

from recorder.payload.frameworks import (
    FRAMEWORK_PROBES,
    FrameworkProbe,
    probe_tags,
    render_probes_js,
)


class TestFrameworkProbes:
    """Test the probe registry and its rendering."""

    def test_specific_probes_rank_first(self):
        tags = probe_tags()

        assert tags.index("next") < tags.index("react")
        assert tags.index("nuxt") < tags.index("vue")

    def test_tags_unique(self):
        tags = probe_tags()
        assert len(tags) == len(set(tags))

    def test_render_with_listener(self):
        probe = FrameworkProbe(tag="demo", detect="window.Demo", listen="window.Demo.onRoute(notify);")

        rendered = render_probes_js([probe])

        assert rendered.startswith("[")
        assert rendered.rstrip().endswith("]")
        assert 'tag: "demo"' in rendered
        assert "return !!(window.Demo);" in rendered
        assert "function (notify) { window.Demo.onRoute(notify); }" in rendered

    def test_render_without_listener(self):
        rendered = render_probes_js([FrameworkProbe(tag="ember", detect="window.Ember")])
        assert "listen: null" in rendered

    def test_new_probe_extends_registry(self):
        probes = FRAMEWORK_PROBES + [FrameworkProbe(tag="svelte", detect="window.__svelte")]

        assert probe_tags(probes)[-1] == "svelte"
        assert "window.__svelte" in render_probes_js(probes)
