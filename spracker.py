#!/usr/bin/env python
import re
import os
import sys
import math
import codecs
import argparse
import textwrap
import collections
import contextlib # Helpers
import copy # Core
from io import StringIO, BytesIO # Helpers, Core
import configparser

from PIL import __version__ as PILVersion
from PIL import Image as PILImage # Core
from PIL import PngImagePlugin # Managers

from jinja2 import Template # Formats/Base

# START Version
__version__ = '0.1.0'
# END Version

# START Helpers
def format_number(value):
    """Format a pixel value the way stylesheets expect it: integral values
    without a trailing ``.0``, everything else at full precision."""
    value = float(value)
    if value == int(value):
        return str(int(value))
    return repr(value)


def log_warning(message):
    sys.stderr.write("Warning: {0}\n".format(message))


def log_error(message):
    sys.stderr.write("Error: {0}\n".format(message))


class _Missing(object):
    """ Missing object necessary for cached_property"""
    def __repr__(self):
        return 'no value'

    def __reduce__(self):
        return '_missing'

_missing = _Missing()


class cached_property(object):
    """Lazy property: the wrapped function runs on first access and the
    result is stored on the instance."""

    def __init__(self, func, name=None, doc=None):
        self.__name__ = name or func.__name__
        self.__module__ = func.__module__
        self.__doc__ = doc or func.__doc__
        self.func = func

    def __get__(self, obj, type=None):
        if obj is None:
            return self
        value = obj.__dict__.get(self.__name__, _missing)
        if value is _missing:
            value = self.func(obj)
            obj.__dict__[self.__name__] = value
        return value


@contextlib.contextmanager
def redirect_stdout(stream=None):
    stream = stream or StringIO()
    previous, sys.stdout = sys.stdout, stream
    try:
        yield stream
    finally:
        sys.stdout = previous
# END Helpers

# START Magnification
Magnification = collections.namedtuple('Magnification', 'base factor explicit')

factor_re = re.compile(r'[0-9]+(\.[0-9]+)?\Z', re.ASCII)


def parse_magnification(name):
    """Split a sprite name such as ``icon@2x`` into its base name and
    magnification factor.

    Anything other than exactly one ``@`` followed by a positive number and a
    trailing ``x`` is not a magnification suffix: the whole name is kept and
    the factor is 1.0.

    :param name: Sprite name, without file extension.
    """
    plain = Magnification(name, 1.0, False)

    segments = name.split('@')
    if len(segments) != 2:
        return plain

    base, suffix = segments
    if not suffix.endswith('x'):
        return plain

    number = suffix[:-1]
    if not factor_re.match(number):
        return plain

    factor = float(number)
    if factor <= 0:
        return plain

    return Magnification(base, factor, True)
# END Magnification

# START Layout
LogicalRect = collections.namedtuple('LogicalRect', 'x y width height')


class NamedImage(object):

    def __init__(self, name, image):
        """Pair a decoded image with the name used for its stylesheet rules.

        :param name: Sprite name (file name without extension).
        :param image: Pillow image.
        """
        self.name = name
        self.image = image

    @property
    def width(self):
        return self.image.size[0]

    @property
    def height(self):
        return self.image.size[1]

    def __repr__(self):
        return '<NamedImage {0!r} {1}x{2}>'.format(self.name, self.width, self.height)


class Placement(object):
    """Where one sprite lives inside the sheet, in sheet pixels."""

    def __init__(self, name, factor, top_padding, bottom_padding,
                 x0, y0, x1, y1):
        self.name = name
        self.factor = factor
        self.top_padding = top_padding
        self.bottom_padding = bottom_padding
        self.x0 = x0
        self.y0 = y0
        self.x1 = x1
        self.y1 = y1

    @property
    def width(self):
        return self.x1 - self.x0

    @property
    def height(self):
        return self.y1 - self.y0

    @property
    def box(self):
        return (self.x0, self.y0, self.x1, self.y1)

    def __repr__(self):
        return '<Placement {0!r} @{1}x {2}>'.format(self.name, format_number(self.factor), self.box)


def layout(images, warn=None):
    """Stack ``images`` in a single column, in order, and return the canvas
    size together with one :class:`Placement` per image.

    Every magnified sprite asks for ``ceil(factor)`` rows of padding above and
    below it, sprites at 1x ask for none.
    Neighbours share the gutter between them, so the rows above a sprite are
    the larger of its own request and the previous sprite's bottom padding.
    The first sprite starts at row 0.

    When a sprite's height is not a multiple of its factor the rectangle
    starts one row higher, so the scaled-down region rounds up to a whole
    logical pixel instead of truncating. Each such sprite is reported once
    through ``warn``.

    :param images: Ordered sequence of :class:`NamedImage`.
    :param warn: Callable receiving warning messages. Defaults to stderr.
    """
    warn = warn or log_warning

    placements = []
    width = offset = 0

    for image in images:
        base, factor, _ = parse_magnification(image.name)
        top_padding = bottom_padding = int(math.ceil(factor)) if factor != 1 else 0

        fudge = 0
        if math.fmod(image.height, factor) != 0:
            fudge = 1
            warn("Height of sprite `{0}` ({1}px) is not a multiple of its "
                 "magnification factor ({2}x); rounding up to avoid truncated "
                 "pixels.".format(base, image.height, format_number(factor)))

        if placements:
            top_padding = max(top_padding, placements[-1].bottom_padding)
        else:
            top_padding = 0

        placements.append(Placement(name=base,
                                    factor=factor,
                                    top_padding=top_padding,
                                    bottom_padding=bottom_padding,
                                    x0=0,
                                    y0=offset + top_padding - fudge,
                                    x1=image.width,
                                    y1=offset + top_padding + image.height))

        offset += image.height + top_padding
        width = max(width, image.width)

    return (width, offset), placements


def project(canvas_size, placement):
    """Translate a placement into logical (CSS pixel) units."""
    factor = placement.factor
    return LogicalRect(x=placement.x0 / factor,
                       y=placement.y0 / factor,
                       width=placement.width / factor,
                       height=placement.height / factor)


def project_canvas(canvas_size, factor):
    """Logical size of the whole sheet when drawn at ``factor`` density."""
    width, height = canvas_size
    return width / factor, height / factor


def compose(canvas_size, images, placements):
    """Paste every image into a transparent canvas at its placement."""
    canvas = PILImage.new('RGBA', canvas_size, (0, 0, 0, 0))
    for image, placement in zip(images, placements):
        canvas.paste(image.image, (placement.x0, placement.y0))
    return canvas
# END Layout

# START Core
class ConfigurableFromFile(object):

    def _get_config_from_file(self, filename, section):
        """Return, as a dictionary, all the available configuration inside the
        sprite configuration file on this sprite path."""

        def clean(value):
            return {'true': True, 'false': False}.get(value.lower(), value)

        config = configparser.RawConfigParser()
        config.read(os.path.join(self.config_path, filename))
        try:
            keys = config.options(section)
        except configparser.NoSectionError:
            return {}
        return dict([[k, clean(config.get(section, k))] for k in keys])


valid_extensions = ['png', 'jpg', 'jpeg', 'gif']


def load_image(path):
    """Decode ``path`` into an RGBA :class:`NamedImage` named after the file."""
    name = os.path.splitext(os.path.basename(path))[0]

    with open(path, "rb") as img:
        imageio = BytesIO(img.read())

    try:
        source_image = PILImage.open(imageio)
        image = PILImage.new('RGBA', source_image.size, (0, 0, 0, 0))

        if source_image.mode == 'L':
            alpha = source_image.split()[0]
            transparency = source_image.info.get('transparency')
            mask = PILImage.eval(alpha, lambda a: 0 if a == transparency else 255)
            image.paste(source_image, (0, 0), mask=mask)
        else:
            image.paste(source_image, (0, 0))
    finally:
        imageio.close()

    return NamedImage(name, image)


def read_image_folder(path):
    """Return every decodable image inside ``path``, sorted by file name.

    Subdirectories, hidden files and files without a png, jpg, jpeg or gif
    extension are ignored. Files that can't be decoded are reported and
    skipped.
    """
    if not os.path.exists(path):
        raise SourceFolderNotFoundError(path)
    if not os.path.isdir(path):
        return []

    images = []
    for filename in sorted(os.listdir(path)):
        full_path = os.path.join(path, filename)
        if filename.startswith('.') or os.path.isdir(full_path):
            continue
        extension = os.path.splitext(filename)[1][1:].lower()
        if extension not in valid_extensions:
            continue
        try:
            images.append(load_image(full_path))
        except (IOError, OSError):
            log_error("Problem decoding image '{0}'".format(full_path))
            continue
        print("\t{0} added to sprite".format(filename))

    if not images:
        log_warning("Folder '{0}' contains no images; no sprite-sheet will "
                    "be generated".format(path))

    return images


class SpriteSheet(ConfigurableFromFile):

    config_filename = 'sprite.conf'
    config_section = 'sprite'

    def __init__(self, path, config, name=None):
        self.path = self.config_path = path
        self.config = copy.deepcopy(config)
        self.config.update(self._get_config_from_file(self.config_filename, self.config_section))
        self.name = name or self.config.get('name') or os.path.basename(os.path.abspath(path))

    @cached_property
    def images(self):
        print("Processing '{0}':".format(self.name))
        return read_image_folder(self.path)

    @cached_property
    def arrangement(self):
        return layout(self.images, warn=log_warning)

    @property
    def canvas_size(self):
        return self.arrangement[0]

    @property
    def placements(self):
        return self.arrangement[1]

    @cached_property
    def canvas(self):
        return compose(self.canvas_size, self.images, self.placements)

    @property
    def url(self):
        """Public url of the sheet image, as referenced by the stylesheet."""
        prefix = self.config.get('url')
        if prefix is None:
            prefix = self.config['spritesheets_folder']
        prefix = fix_windows_path(prefix or '').rstrip('/')
        if prefix:
            return '{0}/{1}.png'.format(prefix, self.name)
        return '{0}.png'.format(self.name)

    @property
    def stylesheet_extension(self):
        return 'scss' if self.config['scss'] else 'css'

    @property
    def image_path(self):
        return os.path.join(self.config['spritesheets_folder'], '{0}.png'.format(self.name))

    @property
    def stylesheet_path(self):
        return os.path.join(self.config['stylesheets_folder'],
                            '{0}.{1}'.format(self.name, self.stylesheet_extension))

    @cached_property
    def stylesheet(self):
        if self.config['scss']:
            labels = ['scss_variables', 'scss_mixins', 'css']
        else:
            labels = ['css']
        return '\n\n'.join(formats[label](sprite_sheet=self).render().strip() for label in labels) + '\n'


def fix_windows_path(path):
    if os.name == 'nt':
        path = path.replace('\\', '/')
    return path


def sprites_modified(folder, sheet_path):
    """Return ``True`` unless ``sheet_path`` exists and is newer than
    ``folder`` and everything inside it."""
    if not os.path.exists(sheet_path):
        return True

    sheet_mtime = os.stat(sheet_path).st_mtime
    if os.stat(folder).st_mtime > sheet_mtime:
        return True

    for filename in os.listdir(folder):
        try:
            mtime = os.stat(os.path.join(folder, filename)).st_mtime
        except OSError:
            continue
        if mtime > sheet_mtime:
            return True
    return False
# END Core

# START Managers
def generate_sprite_sheet_from_folder(folder, config, name=None):
    """Build the sheet for a single folder of sprites.

    Returns ``None`` when the sheet is up to date or the folder holds no
    images.
    """
    if not os.path.isdir(folder):
        raise SourceFolderNotFoundError(folder)

    sheet = SpriteSheet(path=folder, config=config, name=name)

    outputs = (sheet.image_path, sheet.stylesheet_path)
    if sheet.config['check_timestamps'] and not any(sprites_modified(folder, p) for p in outputs):
        print("No sprites have been added or modified since '{0}' was "
              "generated; skipping generation".format(sheet.image_path))
        return None

    if not sheet.images:
        return None

    return sheet


def generate_sprite_sheets_from_folders(super_folder, config):
    """Build one sheet per subfolder of ``super_folder``.

    A failing subfolder is reported and the remaining ones are still
    processed. Returns the generated sheets and the errors encountered.
    """
    if not os.path.isdir(super_folder):
        raise SourceFolderNotFoundError(super_folder)

    folders = [f for f in sorted(os.listdir(super_folder))
               if not f.startswith('.') and os.path.isdir(os.path.join(super_folder, f))]
    if not folders:
        raise NoSpritesFoldersFoundError(super_folder)

    sheets = []
    errors = []
    for folder in folders:
        try:
            sheet = generate_sprite_sheet_from_folder(os.path.join(super_folder, folder), config)
        except (SprackerError, IOError, OSError) as e:
            log_error("Problem generating sprite-sheet for '{0}': {1}".format(folder, e))
            errors.append(e)
            continue
        if sheet is not None:
            sheets.append(sheet)
    return sheets, errors


def _prepare_output(folder, path):
    if folder and not os.path.exists(folder):
        try:
            os.makedirs(folder)
        except OSError:
            raise OutputError(folder)
        print("Created output folder '{0}'".format(folder))
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            raise OutputError(path)


def write_sprite_sheet(sheet):
    path = sheet.image_path
    _prepare_output(os.path.dirname(path), path)

    meta = PngImagePlugin.PngInfo()
    meta.add_text('Software', 'spracker-%s' % __version__)
    try:
        sheet.canvas.save(path, optimize=False, pnginfo=meta)
    except (IOError, OSError):
        raise OutputError(path)
    return path


def write_style_sheet(sheet):
    path = sheet.stylesheet_path
    _prepare_output(os.path.dirname(path), path)
    try:
        with codecs.open(path, 'w', 'utf-8') as f:
            f.write(sheet.stylesheet)
    except (IOError, OSError):
        raise OutputError(path)
    return path
# END Managers

# START Formats/Base
class BaseTextFormat(object):

    template = ''

    def __init__(self, sprite_sheet):
        self.sprite_sheet = sprite_sheet

    @property
    def format_label(self):
        return dict((v, k) for k, v in formats.items())[self.__class__]

    def get_context(self):
        sheet = self.sprite_sheet
        width, height = sheet.canvas_size
        context = {'version': __version__,
                   'name': sheet.name,
                   'url': sheet.url,
                   'width': format_number(width),
                   'height': format_number(height),
                   'sprites': []}

        for placement in sheet.placements:
            rect = project(sheet.canvas_size, placement)
            sheet_width, sheet_height = project_canvas(sheet.canvas_size, placement.factor)
            context['sprites'].append(dict(name=placement.name,
                                           x=format_number(-rect.x),
                                           y=format_number(-rect.y),
                                           width=format_number(rect.width),
                                           height=format_number(rect.height),
                                           magnified=placement.factor != 1,
                                           sheet_width=format_number(sheet_width),
                                           sheet_height=format_number(sheet_height)))
        return context

    def render(self):
        context = self.get_context()
        template = self.template
        custom_template_config = '{0}_template'.format(self.format_label)
        if self.sprite_sheet.config.get(custom_template_config):
            with open(self.sprite_sheet.config[custom_template_config]) as f:
                template = f.read()
        return Template(textwrap.dedent(template).strip()).render(**context)
# END Formats/Base

# START Formats/SCSS
class ScssVariablesFormat(BaseTextFormat):

    template = u"""
        ${{ name }}-url: url("{{ url }}");

        ${{ name }}-width: {{ width }}px;
        ${{ name }}-height: {{ height }}px;
        {% for sprite in sprites %}
        ${{ name }}-{{ sprite.name }}-x: {{ sprite.x }}px;
        ${{ name }}-{{ sprite.name }}-y: {{ sprite.y }}px;
        ${{ name }}-{{ sprite.name }}-width: {{ sprite.width }}px;
        ${{ name }}-{{ sprite.name }}-height: {{ sprite.height }}px;
        {% endfor %}
        """


class ScssMixinsFormat(BaseTextFormat):

    template = u"""
        {% for sprite in sprites %}
        @mixin {{ name }}-{{ sprite.name }}() {
          background: url("{{ url }}") no-repeat {{ sprite.x }}px {{ sprite.y }}px;
          {%- if sprite.magnified %}
          @include background-size({{ sprite.sheet_width }}px {{ sprite.sheet_height }}px);
          {%- endif %}
          width: {{ sprite.width }}px;
          height: {{ sprite.height }}px;
        }
        {% endfor %}
        """
# END Formats/SCSS

# START Formats/CSS
class CssClassesFormat(BaseTextFormat):

    template = u"""
        {% for sprite in sprites %}
        .{{ name }}-{{ sprite.name }} {
          background: url("{{ url }}") no-repeat {{ sprite.x }}px {{ sprite.y }}px;
          {%- if sprite.magnified %}
          background-size: {{ sprite.sheet_width }}px {{ sprite.sheet_height }}px;
          {%- endif %}
          width: {{ sprite.width }}px;
          height: {{ sprite.height }}px;
        }
        {% endfor %}
        """
# END Formats/CSS

# START Lists
formats = {'scss_variables': ScssVariablesFormat,
           'scss_mixins': ScssMixinsFormat,
           'css': CssClassesFormat}
# END Lists

# START Exceptions
class SprackerError(Exception):
    """Base Exception class for spracker Errors."""
    error_code = 999


class SourceFolderNotFoundError(SprackerError):
    """Raised if a sprites folder doesn't exist or isn't a directory."""
    error_code = 4


class NoSpritesFoldersFoundError(SprackerError):
    """Raised if a folder doesn't contain any sprites subfolder."""
    error_code = 5


class OutputError(SprackerError):
    """Raised if a sprite-sheet or stylesheet can't be written."""
    error_code = 6
# END Exceptions

# START Main
DEFAULT_CONFIG = {'scss': True,
                  'check_timestamps': True,
                  'url': None,
                  'spritesheets_folder': '.',
                  'stylesheets_folder': '.'}


def build_parser():
    parser = argparse.ArgumentParser(prog='spracker', description="%(prog)s [sprites folder | --sprites-folder | -s]")

    parser.add_argument("source", nargs='?', default=None, help="Folder containing one subfolder of sprite images per sprite-sheet")
    parser.add_argument("--sprites-folder", "-s", dest="sprites_folder", type=str, default=None, metavar='DIR', help="Same as the positional argument (default: .)")
    parser.add_argument("--spritesheets-folder", dest="spritesheets_folder", type=str, default='.', metavar='DIR', help="Output folder for the sprite-sheet images")
    parser.add_argument("--stylesheets-folder", dest="stylesheets_folder", type=str, default='.', metavar='DIR', help="Output folder for the stylesheets")
    parser.add_argument("-u", "--url", dest="url", type=str, default=None, help="Prefix used to refer to the sprite-sheets from the stylesheets (default: the spritesheets folder)")
    parser.add_argument("--scss", dest="scss", action='store_true', default=True, help="Generate SCSS variables, mixins and classes (default)")
    parser.add_argument("--css", dest="scss", action='store_false', help="Generate plain CSS classes only")
    parser.add_argument("--check-timestamps", dest="check_timestamps", action='store_true', default=True, help="Don't regenerate sprite-sheets newer than their sprite images (default)")
    parser.add_argument("-f", "--force", dest="check_timestamps", action='store_false', help="Regenerate every sprite-sheet even if it is up to date")
    parser.add_argument("--single", dest="single", action='store_true', default=False, help="Treat the sprites folder itself as a single sprite-sheet")
    parser.add_argument("-q", "--quiet", dest="quiet", action='store_true', default=False, help="Suppress all normal output")
    parser.add_argument("-v", "--version", action="version", version='%(prog)s ' + __version__, help="Show program's version number and exit")
    return parser


def run(options):
    """Generate and write every sprite-sheet described by ``options``.

    Returns the errors of the sprite folders that couldn't be processed.
    """
    config = dict(DEFAULT_CONFIG)
    config.update(scss=options.scss,
                  check_timestamps=options.check_timestamps,
                  url=options.url,
                  spritesheets_folder=options.spritesheets_folder,
                  stylesheets_folder=options.stylesheets_folder)

    if options.single:
        sheet = generate_sprite_sheet_from_folder(options.source, config)
        sheets = [sheet] if sheet is not None else []
        errors = []
    else:
        sheets, errors = generate_sprite_sheets_from_folders(options.source, config)

    for sheet in sheets:
        print("Generated sprite-sheet '{0}'".format(write_sprite_sheet(sheet)))
        print("Generated stylesheet '{0}'".format(write_style_sheet(sheet)))

    return errors


def main(argv=None):

    argv = (argv or sys.argv)[1:]

    parser = build_parser()
    options = parser.parse_args(argv)
    options.source = options.sprites_folder or options.source or '.'

    try:
        if options.quiet:
            with redirect_stdout():
                errors = run(options)
        else:
            errors = run(options)
    except SourceFolderNotFoundError as e:
        sys.stderr.write("Error: Directory not found: '{0}'.\n".format(e.args[0]))
        return e.error_code
    except NoSpritesFoldersFoundError as e:
        sys.stderr.write("Error: No sprites folders found in '{0}'.\n".format(e.args[0]))
        return e.error_code
    except OutputError as e:
        sys.stderr.write("Error: Couldn't write '{0}'.\n".format(e.args[0]))
        return e.error_code
    except Exception:
        import platform
        import traceback
        sys.stderr.write("\n")
        sys.stderr.write("=" * 80)
        sys.stderr.write("\nYou've found a bug! Please, raise an issue attaching the following traceback\n")
        sys.stderr.write("-" * 80)
        sys.stderr.write("\n")
        sys.stderr.write("Version: {0}\n".format(__version__))
        sys.stderr.write("Python: {0}\n".format(sys.version))
        sys.stderr.write("PIL version: {0}\n".format(PILVersion))
        sys.stderr.write("Platform: {0}\n".format(platform.platform()))
        sys.stderr.write("Config: {0}\n".format(vars(options)))
        sys.stderr.write("Args: {0}\n\n".format(sys.argv))
        sys.stderr.write(traceback.format_exc())
        sys.stderr.write("=" * 80)
        sys.stderr.write("\n")
        return 1

    if errors:
        return getattr(errors[-1], 'error_code', 1)
    return 0

if __name__ == "__main__":
    sys.exit(main())
# END Main
