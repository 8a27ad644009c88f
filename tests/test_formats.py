import os
import tempfile
import textwrap
import unittest

from PIL import Image as PILImage

from spracker import (CssClassesFormat, DEFAULT_CONFIG, NamedImage,
                      ScssMixinsFormat, ScssVariablesFormat, SpriteSheet,
                      format_number)


def make_sheet(path, images, **config):
    options = dict(DEFAULT_CONFIG, url='/img')
    options.update(config)
    sheet = SpriteSheet(path=path, config=options, name='icons')
    sheet.images = [NamedImage(name, PILImage.new('RGBA', size)) for name, size in images]
    return sheet


class FormatNumberTests(unittest.TestCase):

    def test_integral_values_have_no_decimals(self):
        self.assertEqual(format_number(10.0), '10')
        self.assertEqual(format_number(-6), '-6')
        self.assertEqual(format_number(-0.0), '0')

    def test_fractions_are_kept(self):
        self.assertEqual(format_number(7.5), '7.5')
        self.assertEqual(format_number(-0.5), '-0.5')


class FormatsTests(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.sheet = make_sheet(self.tmp.name, [('arrow', (10, 10)), ('star@2x', (20, 20))])

    def test_scss_variables(self):
        output = ScssVariablesFormat(sprite_sheet=self.sheet).render()
        lines = output.splitlines()

        self.assertEqual(lines[0], '$icons-url: url("/img/icons.png");')
        self.assertIn('$icons-width: 20px;', lines)
        self.assertIn('$icons-height: 32px;', lines)
        self.assertIn('$icons-arrow-x: 0px;', lines)
        self.assertIn('$icons-arrow-y: 0px;', lines)
        self.assertIn('$icons-arrow-width: 10px;', lines)
        self.assertIn('$icons-arrow-height: 10px;', lines)
        self.assertIn('$icons-star-x: 0px;', lines)
        self.assertIn('$icons-star-y: -6px;', lines)
        self.assertIn('$icons-star-width: 10px;', lines)
        self.assertIn('$icons-star-height: 10px;', lines)

    def test_scss_mixins(self):
        output = ScssMixinsFormat(sprite_sheet=self.sheet).render().strip()
        arrow, star = output.split('\n\n')

        self.assertEqual(arrow, textwrap.dedent("""\
            @mixin icons-arrow() {
              background: url("/img/icons.png") no-repeat 0px 0px;
              width: 10px;
              height: 10px;
            }"""))
        self.assertEqual(star, textwrap.dedent("""\
            @mixin icons-star() {
              background: url("/img/icons.png") no-repeat 0px -6px;
              @include background-size(10px 16px);
              width: 10px;
              height: 10px;
            }"""))

    def test_css_classes(self):
        output = CssClassesFormat(sprite_sheet=self.sheet).render().strip()
        arrow, star = output.split('\n\n')

        self.assertEqual(arrow, textwrap.dedent("""\
            .icons-arrow {
              background: url("/img/icons.png") no-repeat 0px 0px;
              width: 10px;
              height: 10px;
            }"""))
        self.assertEqual(star, textwrap.dedent("""\
            .icons-star {
              background: url("/img/icons.png") no-repeat 0px -6px;
              background-size: 10px 16px;
              width: 10px;
              height: 10px;
            }"""))

    def test_fudged_sprite_uses_fractional_offsets(self):
        sheet = make_sheet(self.tmp.name, [('odd@2x', (6, 15))])
        output = CssClassesFormat(sprite_sheet=sheet).render()
        self.assertIn('no-repeat 0px 0.5px;', output)
        self.assertIn('height: 8px;', output)
        self.assertIn('background-size: 3px 7.5px;', output)

    def test_scss_stylesheet_contains_every_section(self):
        stylesheet = self.sheet.stylesheet
        self.assertTrue(stylesheet.startswith('$icons-url'))
        self.assertIn('@mixin icons-star()', stylesheet)
        self.assertIn('.icons-star {', stylesheet)
        self.assertTrue(stylesheet.endswith('}\n'))
        self.assertEqual(self.sheet.stylesheet_extension, 'scss')

    def test_css_stylesheet_only_has_classes(self):
        sheet = make_sheet(self.tmp.name, [('arrow', (10, 10))], scss=False)
        stylesheet = sheet.stylesheet
        self.assertTrue(stylesheet.startswith('.icons-arrow {'))
        self.assertNotIn('$', stylesheet)
        self.assertNotIn('@mixin', stylesheet)
        self.assertEqual(sheet.stylesheet_extension, 'css')

    def test_url_defaults_to_spritesheets_folder(self):
        sheet = make_sheet(self.tmp.name, [], url=None, spritesheets_folder='static/sprites/')
        self.assertEqual(sheet.url, 'static/sprites/icons.png')

    def test_empty_url(self):
        sheet = make_sheet(self.tmp.name, [], url='')
        self.assertEqual(sheet.url, 'icons.png')

    def test_custom_template(self):
        template_path = os.path.join(self.tmp.name, 'custom.jinja')
        with open(template_path, 'w') as f:
            f.write('{% for sprite in sprites %}{{ sprite.name }}:{{ sprite.y }};{% endfor %}')

        sheet = make_sheet(self.tmp.name, [('arrow', (10, 10)), ('star@2x', (20, 20))],
                           css_template=template_path)
        self.assertEqual(CssClassesFormat(sprite_sheet=sheet).render(), 'arrow:0;star:-6;')


if __name__ == '__main__':
    unittest.main()
